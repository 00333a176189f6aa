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

import argparse
import errno
import importlib
import sys
import types

from twisted.conch.ssh import keys
from twisted.internet import error, reactor
from twisted.python import log

from . import __version__, util
from .server import GitLiteServer


def get_argument_parser():
  parser = argparse.ArgumentParser(prog='gitlite', description='''
    gitlite v{0} - a self-hosted Git server over SSH'''.format(__version__))
  parser.add_argument('-c', '--config', default='gitlite_config',
    help='name of the configuration module (default: %(default)s)')
  parser.add_argument('-p', '--port', type=int, help='the port to listen on')
  parser.add_argument('-i', '--interface', help='the address to bind to')
  parser.add_argument('-d', '--data', help='the data directory')
  return parser


def load_config(args):
  ''' Import the configuration module named in *args* and apply the
  command line overrides. Returns a namespace with the configuration
  values that the `GitLiteServer` expects. '''

  module = importlib.import_module(args.config)
  config = types.SimpleNamespace(
    port=getattr(module, 'port', 2222),
    interface=getattr(module, 'interface', ''),
    data_path=getattr(module, 'data_path', 'data'),
    git_bin_path=getattr(module, 'git_bin_path', None),
    max_consoles=getattr(module, 'max_consoles', 4))
  if args.port is not None:
    config.port = args.port
  if args.interface is not None:
    config.interface = args.interface
  if args.data is not None:
    config.data_path = args.data
  return config


def main(argv=None):
  parser = get_argument_parser()
  args = parser.parse_args(argv)
  try:
    config = load_config(args)
  except ImportError as exc:
    util.printerr('error: could not load configuration {!r}: {}'.format(
      args.config, exc))
    return errno.ENOENT

  log.startLogging(sys.stderr)
  server = GitLiteServer(config)
  try:
    server.start()
  except (OSError, ValueError, keys.BadKeyError, error.CannotListenError):
    log.err(None, 'gitlite could not be started')
    return 1

  reactor.addSystemEventTrigger('before', 'shutdown', server.shutdown)
  reactor.run()
  return 0


if __name__ == '__main__':
  sys.exit(main())
