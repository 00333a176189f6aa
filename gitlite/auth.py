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

import collections
import re

from . import repo, ssh, storage, util

IDENTITY_UNKNOWN = 0
IDENTITY_NORMAL = 1
IDENTITY_ADMIN = 2

ADMIN_NAME = 'admin'
RESERVED_NAMES = frozenset([ADMIN_NAME, repo.GUEST_NAME])
USER_NAME_RE = re.compile(r'[A-Za-z0-9_\-]+')


class AuthError(Exception):
  pass


class UnknownUser(AuthError):

  def __str__(self):
    return 'user {} does not exist'.format(self.args[0])


class UserExists(AuthError):

  def __str__(self):
    return 'user {} already exists'.format(self.args[0])


class ReservedUserName(AuthError):

  def __str__(self):
    return 'cannot create user named {!r}'.format(self.args[0])


class InvalidUserName(AuthError):

  def __str__(self):
    return 'invalid user name {!r}'.format(self.args[0])


class KeyExists(AuthError):
  pass


class KeyNotFound(AuthError):
  pass


class User(object):
  ''' A registered user and the public keys the user authenticates with.
  Keys are kept in the order they were added and are unique by their
  fingerprint. '''

  def __init__(self, name, keys=()):
    super().__init__()
    self.name = name
    self.keys = list(keys)

  def __repr__(self):
    return 'User(name={!r}, keys={})'.format(self.name, len(self.keys))

  def copy(self):
    return User(self.name, self.keys)

  def fingerprints(self):
    return [ssh.fingerprint(key) for key in self.keys]

  def has_key(self, key):
    return ssh.fingerprint(key) in self.fingerprints()

  def add_key(self, key):
    if self.has_key(key):
      raise KeyExists('key already exists')
    self.keys.append(key)

  def remove_key(self, fingerprint):
    ''' Remove the key with the specified *fingerprint*. Returns True if
    the key was found, False if not. '''

    for index, key in enumerate(self.keys):
      if ssh.fingerprint(key) == fingerprint:
        del self.keys[index]
        return True
    return False


class Identity(collections.namedtuple('Identity', 'user kind')):
  ''' The result of `IdentityStore.authenticate()`. *user* is None for
  unknown keys. '''

  @property
  def name(self):
    return self.user.name if self.user else ''

  @property
  def is_admin(self):
    return self.kind == IDENTITY_ADMIN


class IdentityStore(object):
  ''' Holds the administrator key and the registered users. All methods
  are safe to be called from multiple threads; lookups share a read lock
  while mutations take the lock exclusively. Users returned from this
  store are copies and changing them has no effect on the store. '''

  def __init__(self):
    super().__init__()
    self._lock = util.ReadWriteLock()
    self._admin_key = None
    self._users = {}

  def set_admin_key(self, key):
    with self._lock.write():
      self._admin_key = key

  @property
  def admin_key(self):
    with self._lock.read():
      return self._admin_key

  def authenticate(self, key):
    ''' Resolve *key* to an `Identity`. The administrator key is checked
    first, then the keys of the registered users. Unknown keys resolve to
    `Identity(None, IDENTITY_UNKNOWN)`, this method never fails. '''

    fingerprint = ssh.fingerprint(key)
    with self._lock.read():
      if self._admin_key is not None and \
          ssh.fingerprint(self._admin_key) == fingerprint:
        return Identity(User(ADMIN_NAME, [self._admin_key]), IDENTITY_ADMIN)
      for user in self._users.values():
        if fingerprint in user.fingerprints():
          return Identity(user.copy(), IDENTITY_NORMAL)
    return Identity(None, IDENTITY_UNKNOWN)

  def create_user(self, name):
    if name in RESERVED_NAMES:
      raise ReservedUserName(name)
    if not USER_NAME_RE.fullmatch(name):
      raise InvalidUserName(name)
    with self._lock.write():
      if name in self._users:
        raise UserExists(name)
      self._users[name] = User(name)

  def delete_user(self, name):
    with self._lock.write():
      if name not in self._users:
        raise UnknownUser(name)
      del self._users[name]

  def get_user(self, name):
    with self._lock.read():
      user = self._users.get(name)
      return user.copy() if user else None

  def list_users(self):
    with self._lock.read():
      return [user.copy() for user in self._users.values()]

  def add_key_to_user(self, name, key):
    ''' Add *key* to the user with the specified *name*. Raises
    `UnknownUser` if there is no such user and `KeyExists` if the key
    is already registered, either for this or for another user. '''

    fingerprint = ssh.fingerprint(key)
    with self._lock.write():
      user = self._users.get(name)
      if user is None:
        raise UnknownUser(name)
      owner = self._find_owner(fingerprint)
      if owner is user:
        raise KeyExists('key already exists')
      elif owner is not None:
        raise KeyExists('key already registered for user {}'.format(owner.name))
      user.add_key(key)

  def remove_key_from_user(self, name, fingerprint):
    with self._lock.write():
      user = self._users.get(name)
      if user is None:
        raise UnknownUser(name)
      if not user.remove_key(fingerprint):
        raise KeyNotFound('key not found')

  def _find_owner(self, fingerprint):
    for user in self._users.values():
      if fingerprint in user.fingerprints():
        return user
    return None

  def save(self, path):
    ''' Write all users and their keys to the file at *path*. '''

    with self._lock.read():
      records = [{'name': user.name,
                  'keys': [ssh.format_public_key(k) for k in user.keys]}
                 for user in self._users.values()]
    storage.save_users(path, records)

  def load(self, path, warn=None):
    ''' Load users from the file at *path*. Keys that can not be parsed
    are skipped silently. Records for invalid or reserved user names and
    keys that already belong to another user are skipped, and *warn* is
    called with a message for each of them. A user that is already known
    is replaced by the loaded record. Returns the number of users loaded. '''

    records = storage.load_users(path)
    if not records:
      return 0

    def _warn(message):
      if warn is not None:
        warn(message)

    count = 0
    with self._lock.write():
      for record in records:
        name = record['name']
        if name in RESERVED_NAMES or not USER_NAME_RE.fullmatch(name):
          _warn('skipping user record {!r}: reserved or invalid name'.format(name))
          continue
        user = User(name)
        self._users.pop(name, None)
        for line in record['keys']:
          try:
            key = ssh.parse_public_key(line)
          except ValueError:
            continue
          fingerprint = ssh.fingerprint(key)
          owner = self._find_owner(fingerprint)
          if owner is not None:
            _warn('skipping key {} of user {}: already registered for user {}'
              .format(fingerprint, name, owner.name))
            continue
          try:
            user.add_key(key)
          except KeyExists:
            pass
        self._users[name] = user
        count += 1
    return count
