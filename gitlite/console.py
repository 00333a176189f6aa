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
''' The administration console. It is a line based shell that is only
available to the administrator and provides commands to manage users,
their keys and repositories. The console reads lines with a blocking
*readline* callable and writes output with a *write* callable, it is
meant to run in a thread of its own. '''

import argparse
import collections
import errno
import functools
import shlex
import textwrap

from twisted.python import log

from . import __version__, auth, repo, ssh


class ArgumentParser(argparse.ArgumentParser):
  ''' An `argparse.ArgumentParser` that prints to a `Console` instead of
  stdout and stderr. Errors still raise `SystemExit`. '''

  def __init__(self, console, *args, **kwargs):
    self.console = console
    super().__init__(*args, **kwargs)

  def add_subparsers(self, **kwargs):
    kwargs.setdefault('parser_class', functools.partial(ArgumentParser, self.console))
    return super().add_subparsers(**kwargs)

  def _print_message(self, message, file=None):
    if message:
      self.console.write(message)


class Console(object):
  ''' The administration console of a single session.

  Arguments:
    identities (auth.IdentityStore): The user store to manage.
    repositories (repo.RepositoryTable): The repositories to manage.
    write (callable): Receives the console output as strings.
    readline (callable): Returns the next line of input without the
      line terminator, or None at the end of the input.
    save (callable): Invoked after every successful modification to
      persist the user store and the repositories.
  '''

  Command = collections.namedtuple('Command', 'func')
  commands = {}

  prompt = 'admin> '

  def __init__(self, identities, repositories, write, readline, save=None):
    super().__init__()
    self.identities = identities
    self.repositories = repositories
    self.write = write
    self.readline = readline
    self._save = save

  def print(self, *objects, sep=' ', end='\n'):
    self.write(sep.join(str(x) for x in objects) + end)

  def printerr(self, *objects):
    self.print('error:', *objects)

  def confirm(self, question):
    ''' Ask *question* and requests the user to reply with yes or no.
    Returns True if yes was replied, False if no or if the input ended. '''

    while True:
      self.write(question + ' [y/n] ')
      reply = self.readline()
      if reply is None:
        return False
      reply = reply.strip().lower()
      if reply in ('yes', 'y'):
        return True
      elif reply in ('no', 'n'):
        return False
      else:
        self.print("Please reply with yes/y or no/n.")

  def save(self):
    ''' Persist the current state. Failures are reported, but they are
    not fatal to the console. '''

    if not self._save:
      return
    try:
      self._save()
    except Exception as exc:
      log.err(None, 'saving data from the console failed')
      self.printerr('failed to save data:', exc)

  def command(self, argv):
    ''' Execute the command *argv*. Returns the exit code of the command,
    0 on success. '''

    try:
      command_info = self.commands[argv[0]]
    except KeyError:
      self.printerr('unknown command:', argv[0])
      return 255
    try:
      return command_info.func(self, argv[1:]) or 0
    except SystemExit as exc:
      return exc.code if isinstance(exc.code, int) else 255
    except Exception as exc:
      log.err(None, 'console command {!r} failed'.format(argv))
      self.printerr(exc)
    return 255

  def cmdloop(self):
    ''' Enters the interactive shell. Returns when the user exits or the
    input ends. '''

    self.print("gitlite v{0} - Git Server Management".format(__version__))
    self.print()
    self.command(['help'])

    while True:
      self.write('\n' + self.prompt)
      line = self.readline()
      if line is None:
        break
      try:
        argv = shlex.split(line)
      except ValueError as exc:
        self.printerr(exc)
        continue
      if not argv:
        continue
      if argv[0] in ('exit', 'quit', 'q'):
        self.print('Bye!')
        break
      elif argv[0] == '?':
        argv[0] = 'help'
      self.command(argv)

    return 0


def command(name):
  ''' Decorator for a function to be registered as a command for the
  console. The *name* is the name of the command. '''

  def decorator(func):
    Console.commands[name] = Console.Command(func)
    return func

  return decorator


def _format_perm(perm):
  return repo.perm2str(perm) or '-'


@command('repo')
def _command_repo(console, args):
  ''' Manage repositories and the permissions of users on them. '''

  parser = ArgumentParser(console, prog='repo')
  subparser = parser.add_subparsers(dest='cmd')
  subparser.add_parser('list')
  create_p = subparser.add_parser('create')
  create_p.add_argument('name')
  delete_p = subparser.add_parser('delete')
  delete_p.add_argument('name')
  delete_p.add_argument('-f', '--force', action='store_true')
  adduser_p = subparser.add_parser('adduser')
  adduser_p.add_argument('repo')
  adduser_p.add_argument('user')
  adduser_p.add_argument('perm', choices=['r', 'rw'])
  deluser_p = subparser.add_parser('deluser')
  deluser_p.add_argument('repo')
  deluser_p.add_argument('user')
  args = parser.parse_args(args)

  if not args.cmd:
    parser.print_usage()
    return 0

  if args.cmd == 'list':
    repos = console.repositories.list()
    if not repos:
      console.print('  (no repositories)')
    for r in repos:
      users = ', '.join('{}({})'.format(u, _format_perm(p))
        for u, p in sorted(r.users.items()))
      console.print('  ' + r.name + (' [' + users + ']' if users else ''))
    return 0

  elif args.cmd == 'create':
    try:
      console.repositories.create(args.name)
    except repo.RepositoryError as exc:
      console.printerr(exc)
      return errno.EEXIST if isinstance(exc, repo.RepositoryExists) else 255
    console.print('repository {} created'.format(repo.strip_suffix(args.name)))
    console.save()
    return 0

  elif args.cmd == 'delete':
    if not console.repositories.get(args.name):
      console.printerr(repo.UnknownRepository(args.name))
      return errno.ENOENT
    if not args.force:
      if not console.confirm('do you really want to delete this repository?'):
        return 0
    try:
      console.repositories.delete(args.name)
    except repo.UnknownRepository as exc:
      console.printerr(exc)
      return errno.ENOENT
    except OSError as exc:
      console.printerr(exc)
      return exc.errno or 255
    console.print('repository {} deleted'.format(repo.strip_suffix(args.name)))
    console.save()
    return 0

  elif args.cmd == 'adduser':
    if args.user == repo.GUEST_NAME:
      if args.perm != 'r':
        console.printerr('{} can only be granted read permission'.format(repo.GUEST_NAME))
        return errno.EPERM
    elif console.identities.get_user(args.user) is None:
      console.printerr(auth.UnknownUser(args.user))
      return errno.ENOENT
    try:
      console.repositories.add_user(args.repo, args.user, repo.str2perm(args.perm))
    except repo.UnknownRepository as exc:
      console.printerr(exc)
      return errno.ENOENT
    console.print('user {} added to {} ({})'.format(args.user, args.repo, args.perm))
    console.save()
    return 0

  elif args.cmd == 'deluser':
    try:
      console.repositories.remove_user(args.repo, args.user)
    except repo.UnknownRepository as exc:
      console.printerr(exc)
      return errno.ENOENT
    console.print('user {} removed from {}'.format(args.user, args.repo))
    console.save()
    return 0

  console.printerr("command {!r} not handled".format(args.cmd))
  return 255


@command('user')
def _command_user(console, args):
  ''' Manage users and their SSH keys. '''

  parser = ArgumentParser(console, prog='user')
  subparsers = parser.add_subparsers(dest='cmd')
  subparsers.add_parser('list')
  create_p = subparsers.add_parser('create')
  create_p.add_argument('name')
  delete_p = subparsers.add_parser('delete')
  delete_p.add_argument('name')
  addkey_p = subparsers.add_parser('addkey')
  addkey_p.add_argument('name')
  addkey_p.add_argument('pub_key', nargs='+')
  delkey_p = subparsers.add_parser('delkey')
  delkey_p.add_argument('name')
  delkey_p.add_argument('fingerprint')
  keys_p = subparsers.add_parser('keys')
  keys_p.add_argument('name')
  args = parser.parse_args(args)

  if not args.cmd:
    parser.print_usage()
    return 0

  if args.cmd == 'list':
    users = console.identities.list_users()
    if not users:
      console.print('  (no users)')
    for user in sorted(users, key=lambda x: x.name):
      console.print('  {} ({} keys)'.format(user.name, len(user.keys)))
    return 0

  elif args.cmd == 'create':
    if args.name == repo.GUEST_NAME:
      console.printerr('cannot create user named {!r}'.format(repo.GUEST_NAME))
      return errno.EPERM
    try:
      console.identities.create_user(args.name)
    except auth.AuthError as exc:
      console.printerr(exc)
      return errno.EEXIST if isinstance(exc, auth.UserExists) else errno.EINVAL
    console.print('user {} created'.format(args.name))
    console.save()
    return 0

  elif args.cmd == 'delete':
    if args.name == repo.GUEST_NAME:
      console.printerr('cannot delete the {} user'.format(repo.GUEST_NAME))
      return errno.EPERM
    try:
      console.identities.delete_user(args.name)
    except auth.UnknownUser as exc:
      console.printerr(exc)
      return errno.ENOENT
    console.print('user {} deleted'.format(args.name))
    console.save()
    return 0

  elif args.cmd == 'addkey':
    try:
      key = ssh.parse_public_key(' '.join(args.pub_key))
    except ValueError as exc:
      console.printerr('invalid public key:', exc)
      return errno.EINVAL
    try:
      console.identities.add_key_to_user(args.name, key)
    except auth.UnknownUser as exc:
      console.printerr(exc)
      return errno.ENOENT
    except auth.KeyExists as exc:
      console.printerr(exc)
      return errno.EEXIST
    console.print('key {} added'.format(ssh.fingerprint(key)))
    console.save()
    return 0

  elif args.cmd == 'delkey':
    try:
      console.identities.remove_key_from_user(args.name, args.fingerprint)
    except auth.UnknownUser as exc:
      console.printerr(exc)
      return errno.ENOENT
    except auth.KeyNotFound as exc:
      console.printerr(exc)
      return errno.ENOENT
    console.print('key removed')
    console.save()
    return 0

  elif args.cmd == 'keys':
    user = console.identities.get_user(args.name)
    if user is None:
      console.printerr(auth.UnknownUser(args.name))
      return errno.ENOENT
    if not user.keys:
      console.print('  (no keys)')
    for key in user.keys:
      console.print('  {} {}'.format(ssh.fingerprint(key), key.sshType().decode('ascii')))
    return 0

  console.printerr("command {!r} not handled".format(args.cmd))
  return 255


@command('help')
def _command_help(console, args):
  ''' Show this help. '''

  console.print("Available commands:")
  console.print()
  for key, cmd in sorted(console.commands.items(), key=lambda x: x[0]):
    console.print(key)
    if cmd.func.__doc__:
      for line in textwrap.wrap(textwrap.dedent(cmd.func.__doc__)):
        console.print("  ", line, sep='')
  console.print("exit")
  console.print("  Leave the console.")
  console.print()
  console.print(textwrap.dedent('''\
    repo list | create <name> | delete [-f] <name>
    repo adduser <repo> <user> <r|rw> | deluser <repo> <user>
    user list | create <name> | delete <name> | keys <name>
    user addkey <name> <pubkey> | delkey <name> <fingerprint>

    "guest" is a built-in pseudo user for read-only access. Use
    "repo adduser <repo> guest r" to allow anyone to read a repository.'''))
  return 0
