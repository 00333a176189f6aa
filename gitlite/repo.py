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

import os
import re
import shutil
import subprocess

from . import storage, util

PERM_NONE = 0
PERM_READ = 1
PERM_WRITE = 2

GUEST_NAME = 'guest'
REPO_SUFFIX = '.git'
REPO_NAME_RE = re.compile(r'[A-Za-z0-9_\-]+(/[A-Za-z0-9_\-]+)*')

_perm_strings = {PERM_READ: 'r', PERM_WRITE: 'rw'}


def perm2str(perm):
  ''' Converts a permission level to its persisted form, `r` or `rw`.
  Returns None for `PERM_NONE`. '''

  return _perm_strings.get(perm)


def str2perm(string):
  ''' Converts `r` or `rw` to a permission level. Returns None for any
  other string. '''

  for perm, value in _perm_strings.items():
    if value == string:
      return perm
  return None


def strip_suffix(name):
  if name.endswith(REPO_SUFFIX):
    name = name[:-len(REPO_SUFFIX)]
  return name


class RepositoryError(Exception):
  pass


class UnknownRepository(RepositoryError):

  def __str__(self):
    return 'repository {} does not exist'.format(self.args[0])


class RepositoryExists(RepositoryError):

  def __str__(self):
    return 'repository {} already exists'.format(self.args[0])


class InvalidRepositoryName(RepositoryError):

  def __str__(self):
    return 'invalid repository name {!r}'.format(self.args[0])


class RepositoryInitError(RepositoryError):

  def __str__(self):
    return 'failed to init repository {}: {}'.format(*self.args)


class Repository(object):
  ''' A tracked repository. *users* maps user names (including the
  `guest` pseudo user) to a permission level. '''

  def __init__(self, name, path, users=None):
    super().__init__()
    self.name = name
    self.path = path
    self.users = dict(users or {})

  def __repr__(self):
    return 'Repository(name={!r}, path={!r}, users={!r})'.format(
      self.name, self.path, self.users)

  def copy(self):
    return Repository(self.name, self.path, self.users)


class RepositoryTable(object):
  ''' Tracks the repositories below `<data_path>/repos` and the
  permissions of users on them. Like the `IdentityStore`, all methods are
  thread-safe and repositories returned from it are copies.

  Arguments:
    data_path (str): The data directory. Repositories are stored in
      its `repos` subdirectory as `<name>.git`.
    git (str): The `git` executable used to initialize repositories.
  '''

  def __init__(self, data_path, git='git'):
    super().__init__()
    self.root = os.path.join(data_path, 'repos')
    self.git = git
    self._lock = util.ReadWriteLock()
    self._repos = {}

  def get_repo_path(self, name):
    ''' Returns the absolute path of the repository *name* on the
    filesystem, whether it exists or not. '''

    name = strip_suffix(name)
    path = os.path.join(self.root, *name.split('/')) + REPO_SUFFIX
    return os.path.abspath(path)

  def create(self, name):
    ''' Create a new bare repository. If initializing the repository
    fails, the directory is removed again and `RepositoryInitError` is
    raised. '''

    name = strip_suffix(name)
    if not REPO_NAME_RE.fullmatch(name):
      raise InvalidRepositoryName(name)

    # The write lock is held for the whole `git init`, permission checks
    # wait until the repository is either tracked or cleaned up.
    with self._lock.write():
      if name in self._repos:
        raise RepositoryExists(name)

      path = self.get_repo_path(name)
      created = not os.path.exists(path)
      try:
        os.makedirs(path, exist_ok=True)
        result = subprocess.run([self.git, 'init', '--bare', '--quiet', path],
          stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
          stderr=subprocess.PIPE)
        if result.returncode != 0:
          message = result.stderr.decode('utf8', 'replace').strip()
          raise RepositoryInitError(name, message or
            'git exited with status {}'.format(result.returncode))
      except (OSError, RepositoryInitError) as exc:
        if created:
          shutil.rmtree(path, ignore_errors=True)
          self._prune(os.path.dirname(path))
        if isinstance(exc, RepositoryInitError):
          raise
        raise RepositoryInitError(name, exc)

      self._repos[name] = Repository(name, path)

  def delete(self, name):
    ''' Remove the repository from the disk and stop tracking it. If the
    directory can not be removed, the `OSError` is propagated and the
    repository stays tracked. '''

    name = strip_suffix(name)
    with self._lock.write():
      repo = self._repos.get(name)
      if repo is None:
        raise UnknownRepository(name)
      if os.path.exists(repo.path):
        shutil.rmtree(repo.path)
      self._prune(os.path.dirname(repo.path))
      del self._repos[name]

  def _prune(self, dirname):
    # Remove empty group directories left behind by nested repositories.
    while util.issubpath(dirname, self.root):
      try:
        os.rmdir(dirname)
      except OSError:
        break
      dirname = os.path.dirname(dirname)

  def get(self, name):
    with self._lock.read():
      repo = self._repos.get(strip_suffix(name))
      return repo.copy() if repo else None

  def list(self):
    with self._lock.read():
      return [self._repos[k].copy() for k in sorted(self._repos)]

  def add_user(self, repo_name, user_name, perm):
    ''' Grant *perm* on the repository to *user_name*, replacing any
    previous grant. Restrictions of the `guest` user are not checked
    here. '''

    if perm not in (PERM_NONE, PERM_READ, PERM_WRITE):
      raise ValueError('invalid permission level {!r}'.format(perm))
    with self._lock.write():
      repo = self._repos.get(strip_suffix(repo_name))
      if repo is None:
        raise UnknownRepository(repo_name)
      repo.users[user_name] = perm

  def remove_user(self, repo_name, user_name):
    with self._lock.write():
      repo = self._repos.get(strip_suffix(repo_name))
      if repo is None:
        raise UnknownRepository(repo_name)
      repo.users.pop(user_name, None)

  def check_permission(self, repo_name, user_name, need_write):
    ''' Returns True if *user_name* may read from (or write to, if
    *need_write* is True) the repository. An empty *user_name* stands
    for a caller with an unknown key.

    Read access granted to `guest` applies to every caller, known or
    not, and is checked before anything else. Write access requires an
    explicit `PERM_WRITE` grant for the user. '''

    with self._lock.read():
      repo = self._repos.get(strip_suffix(repo_name))
      if repo is None:
        return False

      if not need_write and repo.users.get(GUEST_NAME, PERM_NONE) >= PERM_READ:
        return True

      if not user_name:
        return False

      perm = repo.users.get(user_name)
      if perm is None:
        return False

      if need_write:
        return perm == PERM_WRITE
      return perm >= PERM_READ

  def save(self, path):
    with self._lock.read():
      records = []
      for repo in (self._repos[k] for k in sorted(self._repos)):
        users = {}
        for user_name, perm in repo.users.items():
          string = perm2str(perm)
          if string:
            users[user_name] = string
        records.append({'name': repo.name, 'path': repo.path, 'users': users})
    storage.save_repo_permissions(path, records)

  def load(self, path, warn=None):
    ''' Load repositories from the file at *path*. A record is only
    admitted if its path exists on the disk and no repository with the
    same name is tracked yet. Unknown permission strings are dropped for
    the respective user, and so is anything but read access for `guest`.
    Returns the number of repositories loaded. '''

    records = storage.load_repo_permissions(path)
    if not records:
      return 0

    def _warn(message):
      if warn is not None:
        warn(message)

    count = 0
    with self._lock.write():
      for record in records:
        name = strip_suffix(record['name'])
        if not os.path.exists(record['path']):
          _warn('skipping repository {}: {} does not exist'.format(
            name, record['path']))
          continue
        if name in self._repos:
          continue
        users = {}
        for user_name, string in record['users'].items():
          perm = str2perm(string)
          if perm is None:
            _warn('dropping permission {!r} of user {} on repository {}'
              .format(string, user_name, name))
            continue
          if user_name == GUEST_NAME and perm != PERM_READ:
            _warn('dropping write permission of {} on repository {}'.format(
              GUEST_NAME, name))
            continue
          users[user_name] = perm
        self._repos[name] = Repository(name, record['path'], users)
        count += 1
    return count
