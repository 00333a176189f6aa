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
''' The per-connection routing decision. A connection is first resolved
to an `Identity` (which never fails, unknown keys are let through) and
then routed by the `SessionRouter` to either the administration console,
a Git command or a rejection. The router does not perform any I/O on the
connection itself, that is up to the transport. '''

import errno
import io
import os

from twisted.python import log as _log

from . import auth, git

REJECT = 'reject'
CONSOLE = 'console'
EXECUTE = 'execute'

_kind_names = {
  auth.IDENTITY_UNKNOWN: 'unknown',
  auth.IDENTITY_NORMAL: 'user',
  auth.IDENTITY_ADMIN: 'admin',
}


class SessionRequest(object):
  ''' Describes what the transport should do with a session. *action* is
  one of `REJECT`, `CONSOLE` and `EXECUTE`. For `EXECUTE`, *command* is
  the parsed `git.GitCommand` and *repo_path* the absolute path of the
  repository. Messages for the client are collected with `print()` and
  are available from `message`. '''

  def __init__(self, identity, raw_command):
    super().__init__()
    self.buffer = io.StringIO()
    self.identity = identity
    self.raw_command = raw_command
    self.action = REJECT
    self.exit_code = 255
    self.command = None
    self.repo_path = None

  def print(self, *objects, **kwargs):
    kwargs['file'] = self.buffer
    print(*objects, **kwargs)

  @property
  def message(self):
    return self.buffer.getvalue()

  @property
  def allowed(self):
    return self.action != REJECT

  def enter_console(self):
    self.action = CONSOLE
    self.exit_code = 0
    return self

  def execute(self, command, repo_path):
    self.action = EXECUTE
    self.exit_code = 0
    self.command = command
    self.repo_path = repo_path
    return self

  def deny(self, exit_code, message=None):
    self.action = REJECT
    self.exit_code = exit_code
    if message:
      self.print('error:', message)
    return self


class SessionRouter(object):
  ''' Decides what happens with an incoming session.

  Arguments:
    identities (auth.IdentityStore): Used to resolve public keys.
    repositories (repo.RepositoryTable): Used for permission checks.
    log (callable): Receives one line for every routing decision.
      Defaults to `twisted.python.log.msg`.
  '''

  def __init__(self, identities, repositories, log=None):
    super().__init__()
    self.identities = identities
    self.repositories = repositories
    self.log = log or _log.msg

  def resolve(self, key):
    ''' Resolve the public *key* of a connecting client. This never
    rejects a key, unknown keys may still be allowed guest access. '''

    identity = self.identities.authenticate(key)
    self.log('public key resolved to {} ({})'.format(
      identity.name or '<unknown>', _kind_names[identity.kind]))
    return identity

  def allow_pty(self, identity):
    return identity.is_admin

  def route(self, identity, raw_command):
    ''' Route a session of *identity*. *raw_command* is the command the
    client wants to execute or None if the client requested a shell.
    Returns a `SessionRequest`. '''

    request = SessionRequest(identity, raw_command)
    self._route(request)
    outcome = request.action
    if not request.allowed:
      outcome += ' ({}) {}'.format(request.exit_code, request.message.strip())
    self.log('session of {} ({}), command {!r}: {}'.format(
      identity.name or '<unknown>', _kind_names[identity.kind],
      raw_command, outcome))
    return request

  def _route(self, request):
    identity = request.identity

    if not request.raw_command:
      if not identity.is_admin:
        return request.deny(errno.EPERM, 'console access is restricted to the administrator')
      return request.enter_console()

    if identity.is_admin:
      return request.deny(errno.EPERM, 'the administrator can not perform Git operations')

    try:
      command = git.parse_command(request.raw_command)
    except git.CommandError as exc:
      return request.deny(errno.EINVAL, str(exc))

    if not self.repositories.check_permission(
        command.repo_path, identity.name, command.is_write):
      mode = 'write' if command.is_write else 'read'
      return request.deny(errno.EPERM, '{} permission to {!r} denied'.format(
        mode, command.repo_path))

    path = self.repositories.get_repo_path(command.repo_path)
    if not os.path.isdir(path):
      return request.deny(errno.ENOENT, 'repository {!r} does not exist'.format(
        command.repo_path))

    return request.execute(command, path)
