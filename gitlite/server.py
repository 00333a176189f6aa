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
''' The SSH server. The transport is implemented with Twisted Conch: every
public key with a valid signature is accepted, the key is resolved to an
identity and each session channel is routed through the `SessionRouter`.
Git commands are run with `reactor.spawnProcess()`, the administration
console runs in a worker thread. '''

import errno
import os
import queue

from twisted.conch import avatar, error as conch_error
from twisted.conch.ssh import factory, keys, session
from twisted.cred import checkers, credentials, error as cred_error, portal
from twisted.internet import defer, error, protocol, reactor, threads
from twisted.python import components, failure, log, threadpool
from zope.interface import implementer

from . import auth, console, git, repo, ssh
from .session import CONSOLE, EXECUTE, SessionRouter


def _exit(proto, exit_code):
  ''' End the session that *proto* (an `SSHSessionProcessProtocol`)
  belongs to and report *exit_code* to the client. '''

  if exit_code == 0:
    reason = error.ProcessDone(0)
  else:
    reason = error.ProcessTerminated(exitCode=exit_code)
  proto.processEnded(failure.Failure(reason))


class _NullTransport(object):

  def write(self, data):
    pass

  def writeSequence(self, seq):
    pass

  def closeStdin(self):
    pass

  def loseConnection(self):
    pass


def _die(proto, message, exit_code):
  if message:
    proto.errReceived(message.encode('utf8'))
  _exit(proto, exit_code)


@implementer(checkers.ICredentialsChecker)
class AnyKeyChecker(object):
  ''' Accepts any public key, as long as the client proves that it has
  the private key. The avatar ID is the key blob. Whether the key belongs
  to anyone is decided by the `GitLiteRealm`. '''

  credentialInterfaces = (credentials.ISSHPrivateKey,)

  def requestAvatarId(self, creds):
    return defer.maybeDeferred(self._check_key, creds)

  def _check_key(self, creds):
    try:
      key = keys.Key.fromString(creds.blob)
    except keys.BadKeyError:
      raise cred_error.UnauthorizedLogin('invalid public key')
    if not creds.signature:
      raise conch_error.ValidPublicKey()
    if not key.verify(creds.signature, creds.sigData):
      raise cred_error.UnauthorizedLogin('invalid key signature')
    return creds.blob


@implementer(portal.IRealm)
class GitLiteRealm(object):

  def __init__(self, server):
    self.server = server

  def requestAvatar(self, avatarId, mind, *interfaces):
    identity = self.server.router.resolve(keys.Key.fromString(avatarId))
    user = GitLiteAvatar(self.server, identity)
    return interfaces[0], user, user.logout


class GitLiteAvatar(avatar.ConchUser):

  def __init__(self, server, identity):
    avatar.ConchUser.__init__(self)
    self.server = server
    self.identity = identity
    self.channelLookup.update({b'session': session.SSHSession})

  def logout(self):
    pass


class ConsoleProtocol(protocol.Protocol):
  ''' Feeds the input of an SSH channel line by line into a `Console`
  that runs in a worker thread and writes its output back. Supports
  backspace, Ctrl+C (ends the console) and Ctrl+D on an empty line
  (ends the console). With *pty* enabled, input is echoed and newlines
  in the output are converted to CRLF. '''

  def __init__(self, server, pty=False):
    self.server = server
    self.pty = pty
    self.lines = queue.Queue()
    self.buffer = bytearray()
    self.closed = False
    self._last = None
    self._escape = 0

  def connectionMade(self):
    self.server.consoles.add(self)
    con = self.server.make_console(self.write, self.readline)
    d = threads.deferToThreadPool(reactor, self.server.console_pool, con.cmdloop)
    d.addErrback(self._failed)
    d.addCallback(self._finished)

  def _failed(self, reason):
    log.err(reason, 'console failed')
    return 255

  def _finished(self, exit_code):
    self.eof()
    self.server.consoles.discard(self)
    if not self.closed:
      self.closed = True
      _exit(self.transport, exit_code)

  def eof(self):
    self.lines.put(None)

  def connectionLost(self, reason=None):
    self.closed = True
    self.eof()

  def readline(self):
    line = self.lines.get()
    if line is None:
      # End of input stays visible to every following read.
      self.lines.put(None)
    return line

  def write(self, text):
    reactor.callFromThread(self._write, text)

  def _write(self, text):
    if self.closed:
      return
    if self.pty:
      text = text.replace('\r\n', '\n').replace('\n', '\r\n')
    self.transport.write(text.encode('utf8'))

  def _echo(self, data):
    if self.pty:
      self.transport.write(data)

  def dataReceived(self, data):
    for char in data:
      last, self._last = self._last, char

      if self._escape:
        # ESC [ ... final, or ESC O final: terminal key sequences are dropped.
        if self._escape == 1 and char in b'[O':
          self._escape = 2
        elif self._escape == 1 or 0x40 <= char <= 0x7e:
          self._escape = 0
        continue

      if char == 0x1b:
        self._escape = 1
      elif char in b'\r\n':
        if char == 0x0a and last == 0x0d:
          continue
        self._echo(b'\r\n')
        line = self.buffer.decode('utf8', 'replace')
        del self.buffer[:]
        self.lines.put(line)
      elif char in (0x7f, 0x08):
        if self.buffer:
          del self.buffer[-1]
          self._echo(b'\b \b')
      elif char == 0x03:
        self._echo(b'^C\r\n')
        del self.buffer[:]
        self.eof()
      elif char == 0x04:
        if not self.buffer:
          self.eof()
      elif 0x20 <= char < 0x7f:
        self.buffer.append(char)
        self._echo(bytes([char]))


@implementer(session.ISession)
class GitLiteSession(object):
  ''' The `ISession` of a `GitLiteAvatar`. '''

  def __init__(self, avatar):
    self.avatar = avatar
    self.server = avatar.server
    self.pty = False
    self.process = None
    self.console = None

  def getPty(self, term, windowSize, modes):
    if not self.server.router.allow_pty(self.avatar.identity):
      raise conch_error.ConchError('pty request denied')
    self.pty = True

  def windowChanged(self, newWindowSize):
    pass

  def _reject(self, proto, request):
    proto.makeConnection(_NullTransport())
    # Deferred so that the reply to the channel request is sent first.
    reactor.callLater(0, _die, proto, request.message, request.exit_code)

  def openShell(self, proto):
    request = self.server.router.route(self.avatar.identity, None)
    if request.action != CONSOLE:
      self._reject(proto, request)
      return
    if len(self.server.consoles) >= self.server.config.max_consoles:
      log.msg('console of {} refused, {} consoles open'.format(
        self.avatar.identity.name, len(self.server.consoles)))
      request.deny(errno.EBUSY, 'too many console sessions')
      self._reject(proto, request)
      return
    self.console = ConsoleProtocol(self.server, pty=self.pty)
    self.console.makeConnection(proto)
    proto.makeConnection(session.wrapProtocol(self.console))

  def execCommand(self, proto, cmd):
    request = self.server.router.route(self.avatar.identity, cmd)
    if request.action != EXECUTE:
      self._reject(proto, request)
      return

    try:
      executable, args = git.process_args(request.command, request.repo_path,
        self.server.config.git_bin_path)
      self.process = reactor.spawnProcess(proto, executable, args,
        env=os.environ.copy(), path=request.repo_path)
    except OSError:
      log.err(None, 'spawning {!r} failed'.format(request.command.operation))
      request.deny(255, 'internal server error')
      self._reject(proto, request)

  def eofReceived(self):
    if self.process:
      self.process.closeStdin()
    if self.console:
      self.console.eof()

  def closed(self):
    if self.console:
      self.console.connectionLost()
    if self.process:
      try:
        self.process.signalProcess('KILL')
      except error.ProcessExitedAlready:
        pass


components.registerAdapter(GitLiteSession, GitLiteAvatar, session.ISession)


class GitLiteFactory(factory.SSHFactory):

  def __init__(self, server, host_key):
    self.portal = portal.Portal(GitLiteRealm(server), [AnyKeyChecker()])
    self.privateKeys = {host_key.sshType(): host_key}
    self.publicKeys = {host_key.sshType(): host_key.public()}


class GitLiteServer(object):
  ''' The gitlite daemon. It owns the user store and the repository
  table for its whole lifetime.

  Arguments:
    config: An object with the attributes `port`, `interface`,
      `data_path`, `git_bin_path` and `max_consoles`. If None, the
      `gitlite_config` module is used.

  Every open console occupies one thread of `console_pool` until it
  ends, at most `max_consoles` consoles are served at once.
  '''

  def __init__(self, config=None):
    super().__init__()
    if config is None:
      import gitlite_config as config
    self.config = config
    self.data_path = config.data_path
    self.identities = auth.IdentityStore()
    git_bin = git.find_executable('git', config.git_bin_path) or 'git'
    self.repositories = repo.RepositoryTable(self.data_path, git=git_bin)
    self.router = SessionRouter(self.identities, self.repositories)
    self.consoles = set()
    self.console_pool = threadpool.ThreadPool(0, config.max_consoles,
      'gitlite-console')
    self.host_key = None
    self._port = None

  @property
  def users_file(self):
    return os.path.join(self.data_path, 'users.json')

  @property
  def repos_file(self):
    return os.path.join(self.data_path, 'repos.json')

  @property
  def admin_key_file(self):
    return os.path.join(self.data_path, 'admin.pub')

  @property
  def host_key_file(self):
    return os.path.join(self.data_path, 'host_key')

  def load(self):
    ''' Prepare the data directory and load the host key, the admin key,
    the users and the repositories. Only a failure to load or generate
    the host key is fatal. '''

    os.makedirs(self.repositories.root, exist_ok=True)

    self.host_key, generated = ssh.load_host_key(self.host_key_file)
    if generated:
      log.msg('generated new host key {}'.format(self.host_key_file))
    log.msg('host key fingerprint {}'.format(ssh.fingerprint(self.host_key)))

    try:
      with open(self.admin_key_file) as fp:
        self.identities.set_admin_key(ssh.parse_public_key(fp.read()))
    except FileNotFoundError:
      log.msg('warning: no administrator key, create {}'.format(self.admin_key_file))
    except (OSError, ValueError) as exc:
      log.msg('warning: could not load administrator key: {}'.format(exc))
    else:
      log.msg('loaded administrator key')

    warn = lambda message: log.msg('warning: ' + message)
    try:
      count = self.identities.load(self.users_file, warn=warn)
      log.msg('loaded {} user(s)'.format(count))
    except (OSError, ValueError) as exc:
      log.msg('warning: could not load users: {}'.format(exc))
    try:
      count = self.repositories.load(self.repos_file, warn=warn)
      log.msg('loaded {} repositories'.format(count))
    except (OSError, ValueError) as exc:
      log.msg('warning: could not load repositories: {}'.format(exc))

  def save(self):
    self.identities.save(self.users_file)
    self.repositories.save(self.repos_file)

  def make_console(self, write, readline):
    return console.Console(self.identities, self.repositories,
      write, readline, save=self.save)

  def make_factory(self):
    return GitLiteFactory(self, self.host_key)

  def start(self):
    ''' Load the data and start listening. Raises a `RuntimeError` if
    the server is already running. '''

    if self._port:
      raise RuntimeError('server is already running')
    self.load()
    self.console_pool.start()
    self._port = reactor.listenTCP(self.config.port, self.make_factory(),
      interface=self.config.interface)
    log.msg('gitlite listening on port {}'.format(self._port.getHost().port))

  def shutdown(self):
    ''' Save the data and stop listening. Open consoles are told that
    their input ended. Returns a Deferred if the server was listening. '''

    for con in list(self.consoles):
      con.eof()
    try:
      self.save()
    except (OSError, ValueError) as exc:
      log.msg('warning: could not save data: {}'.format(exc))
    if self.console_pool.started:
      self.console_pool.stop()
    port, self._port = self._port, None
    if port:
      return port.stopListening()
