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
''' Parsing and validation of the command that a client sends when it
opens an SSH session for a Git operation, eg. `git-upload-pack '/foo.git'`.
Only `git-upload-pack` and `git-receive-pack` are accepted and the path
must be a plain relative repository path. The result is never passed
through a shell. '''

import collections
import os
import re

UPLOAD_PACK = 'git-upload-pack'
RECEIVE_PACK = 'git-receive-pack'
ALLOWED_COMMANDS = frozenset([UPLOAD_PACK, RECEIVE_PACK])

REPO_PATH_RE = re.compile(r'[A-Za-z0-9_\-]+(/[A-Za-z0-9_\-]+)*\.git')


class CommandError(ValueError):
  pass


class InvalidFormat(CommandError):

  def __str__(self):
    return 'invalid command format'


class CommandNotAllowed(CommandError):

  def __str__(self):
    return 'command not allowed: {}'.format(self.args[0])


class InvalidRepoPath(CommandError):

  def __str__(self):
    return 'invalid repo path: {}'.format(self.args[0])


class GitCommand(collections.namedtuple('GitCommand', 'operation repo_path is_write')):
  ''' A validated Git command. *operation* is one of `UPLOAD_PACK` and
  `RECEIVE_PACK`, *repo_path* is relative and ends with `.git`. '''


def parse_command(raw):
  ''' Parse the raw command string *raw* (str or bytes) into a
  `GitCommand`. Raises a `CommandError` subclass if the string does not
  consist of exactly a whitelisted command and a valid repository path. '''

  if isinstance(raw, bytes):
    try:
      raw = raw.decode('utf8')
    except UnicodeDecodeError:
      raise InvalidFormat(raw)

  parts = raw.strip().split(None, 1)
  if len(parts) != 2:
    raise InvalidFormat(raw)

  operation, repo_path = parts
  if operation not in ALLOWED_COMMANDS:
    raise CommandNotAllowed(operation)

  if repo_path[:1] in '\'"' or repo_path[-1:] in '\'"':
    if len(repo_path) < 2 or repo_path[0] != repo_path[-1]:
      raise InvalidFormat(raw)
    repo_path = repo_path[1:-1]
  if repo_path.startswith('/'):
    repo_path = repo_path[1:]

  if not REPO_PATH_RE.fullmatch(repo_path):
    raise InvalidRepoPath(repo_path)

  return GitCommand(operation, repo_path, operation == RECEIVE_PACK)


def find_executable(name, search_path=None):
  ''' Returns the absolute path of the executable *name*. The directories
  in *search_path* are searched before the `PATH`. Returns None if the
  executable can not be found. '''

  dirs = list(search_path or ())
  dirs += os.environ.get('PATH', os.defpath).split(os.pathsep)
  for dirname in dirs:
    filename = os.path.join(dirname, name)
    if os.path.isfile(filename) and os.access(filename, os.X_OK):
      return filename
  return None


def process_args(command, repo_full_path, search_path=None):
  ''' Returns `(executable, argv)` to run *command* on the repository at
  *repo_full_path*. The repository path is the only argument. Raises
  `OSError` if the executable can not be found. '''

  executable = find_executable(command.operation, search_path)
  if not executable:
    raise FileNotFoundError('{} not found'.format(command.operation))
  return executable, [command.operation, repo_full_path]
