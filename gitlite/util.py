# -*- mode: python; tab-width: 2; coding: utf8 -*-
#
# Copyright (C) 2015 Niklas Rosenstein
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND,
# either express or implied. See the License for the specific
# language governing permissions and limitations under the License.

import contextlib
import os
import sys
import threading


class ReadWriteLock(object):
  ''' A lock that admits any number of concurrent readers or exactly one
  writer. Writers that are waiting for the lock take precedence over
  readers that arrive after them. The lock is not reentrant.

  Use the `read()` and `write()` context managers:

      with lock.read():
        ...
  '''

  def __init__(self):
    super().__init__()
    self._cond = threading.Condition(threading.Lock())
    self._readers = 0
    self._writer = False
    self._waiting_writers = 0

  def acquire_read(self):
    with self._cond:
      while self._writer or self._waiting_writers:
        self._cond.wait()
      self._readers += 1

  def release_read(self):
    with self._cond:
      if self._readers <= 0:
        raise RuntimeError('release_read() without matching acquire_read()')
      self._readers -= 1
      if not self._readers:
        self._cond.notify_all()

  def acquire_write(self):
    with self._cond:
      self._waiting_writers += 1
      try:
        while self._writer or self._readers:
          self._cond.wait()
      finally:
        self._waiting_writers -= 1
      self._writer = True

  def release_write(self):
    with self._cond:
      if not self._writer:
        raise RuntimeError('release_write() without matching acquire_write()')
      self._writer = False
      self._cond.notify_all()

  @contextlib.contextmanager
  def read(self):
    self.acquire_read()
    try:
      yield self
    finally:
      self.release_read()

  @contextlib.contextmanager
  def write(self):
    self.acquire_write()
    try:
      yield self
    finally:
      self.release_write()


def relpath(path, parent):
  ''' Returs *path* relative to *parent* or None if it is not a subpath
  of *parent*. You can also use `issubpath()` if you only want to check
  if a path is a subpath of another. '''

  relpath = os.path.relpath(path, parent)
  if relpath == os.curdir or relpath.startswith(os.pardir):
    return None
  return relpath


def issubpath(path, parent):
  ''' Returns True if *path* is a true subpath of *parent*, False if not. '''
  return bool(relpath(path, parent))


def printerr(*args, **kwargs):
  kwargs.setdefault('file', sys.stderr)
  print(*args, **kwargs)
