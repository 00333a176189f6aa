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
''' Public key handling: parsing of OpenSSH `authorized_keys` lines,
fingerprints and the server's own host key. '''

import os
import struct

from cryptography.hazmat.primitives.asymmetric import ed25519
from twisted.conch.ssh import keys

KEY_TYPES = frozenset(['ecdsa-sha2-nistp256', 'ecdsa-sha2-nistp384',
  'ecdsa-sha2-nistp521', 'ssh-ed25519', 'ssh-dss', 'ssh-rsa'])
KEY_OPTIONS = frozenset(['cert-authority', 'command', 'environment',
  'no-agent-forwarding', 'no-port-forwarding', 'no-pty', 'no-user-rc',
  'no-X11-forwarding', 'permitopen', 'principals', 'tunnel'])


def tokenize(line):
  ''' Convert *line* into a list of tokens. Supports double-quotes and
  (unchecked) backslash escapes. '''

  DEFAULT, QUOTE, ESCAPE = 0, 1, 2

  tokens = []
  current = ''
  state = old_state = DEFAULT

  for char in line:
    if state == DEFAULT:
      if char in " \t":
        if current:
          tokens.append(current)
        current = ''
      else:
        current += char
        if char == '"':
          state = QUOTE
    elif state == QUOTE:
      current += char
      if char == '"':
        state = DEFAULT
      elif char == '\\':
        old_state = state
        state = ESCAPE
    elif state == ESCAPE:
      current += char
      state = old_state

  if current:
    tokens.append(current)
  return tokens


def parse_public_key(line):
  ''' Parse a public key in the format of an OpenSSH `authorized_keys`
  line and return a `twisted.conch.ssh.keys.Key`. Leading options (eg.
  `no-pty`) are accepted and discarded, and so is the trailing comment.
  `ValueError` is raised if *line* does not contain a valid public key. '''

  line = line.strip()
  if not line or line.startswith('#'):
    raise ValueError('empty public key')

  OPTIONS, BLOB, COMMENT = 0, 1, 2
  state = OPTIONS
  keytype = None
  blob = None

  for token in tokenize(line):
    if state == OPTIONS:
      if token in KEY_TYPES:
        keytype = token
        state = BLOB
      else:
        for option in token.split(','):
          name = option.partition('=')[0]
          if name not in KEY_OPTIONS:
            raise ValueError('invalid option {!r}'.format(name))
    elif state == BLOB:
      if not token.startswith('AAAA'):
        message = 'invalid blob starts with {!r}'
        raise ValueError(message.format(token[:5] + '...'))
      blob = token
      state = COMMENT
    else:
      break

  if not keytype:
    raise ValueError('no SSH algorithm parsed')
  if not blob:
    raise ValueError('no SSH blob parsed')

  try:
    key = keys.Key.fromString(
      '{} {}'.format(keytype, blob).encode('ascii'), type='public_openssh')
  except (keys.BadKeyError, ValueError, struct.error) as exc:
    raise ValueError('invalid public key: {}'.format(exc))
  if key.sshType().decode('ascii') != keytype:
    raise ValueError('key type {!r} does not match blob'.format(keytype))
  return key


def format_public_key(key):
  ''' Returns the `authorized_keys` representation of *key* without
  options and comment. '''

  return key.public().toString('openssh').decode('ascii')


def fingerprint(key):
  ''' Returns the SHA256 fingerprint of *key* in the same notation that
  `ssh-keygen -l` uses, eg. `SHA256:nThbg6kXUpJWGl7E1IGOCspRomTxdCARLviKw6E5SY8`. '''

  digest = key.fingerprint(keys.FingerprintFormats.SHA256_BASE64)
  return 'SHA256:' + digest.rstrip('=')


def generate_host_key(path):
  ''' Generate a new Ed25519 host key, write it to *path* in OpenSSH
  format (readable only by the owner) and return it. '''

  key = keys.Key(ed25519.Ed25519PrivateKey.generate())
  data = key.toString('openssh', subtype='v1')
  fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
  with os.fdopen(fd, 'wb') as fp:
    fp.write(data)
  return key


def load_host_key(path):
  ''' Load the private host key from *path*, generating a new one if the
  file does not exist. Returns a tuple `(key, generated)`. '''

  if not os.path.exists(path):
    return generate_host_key(path), True
  key = keys.Key.fromFile(path)
  if key.isPublic():
    raise ValueError('{!r} does not contain a private key'.format(path))
  return key, False
