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
''' JSON persistence of the user and repository permission tables. A
missing or empty file is treated as if there was no data. '''

import json
import os


def _read(filename):
  if not os.path.isfile(filename):
    return None
  with open(filename, 'r') as fp:
    data = fp.read()
  if not data.strip():
    return None
  try:
    records = json.loads(data)
  except ValueError as exc:
    raise ValueError('{}: invalid JSON: {}'.format(filename, exc))
  if not isinstance(records, list):
    raise ValueError('{}: expected a list of records'.format(filename))
  return records


def _write(filename, records):
  tmpname = filename + '.tmp'
  with open(tmpname, 'w') as fp:
    json.dump(records, fp, indent=2)
    fp.write('\n')
  os.replace(tmpname, filename)


def load_users(filename):
  ''' Parses the user file and returns a list of `{name, keys}` records
  or None if there is no data. Keys are strings in `authorized_keys`
  format and are not validated here. '''

  records = _read(filename)
  if records is None:
    return None
  result = []
  for record in records:
    if not isinstance(record, dict) or not isinstance(record.get('name'), str):
      raise ValueError('{}: invalid user record {!r}'.format(filename, record))
    keys = record.get('keys') or []
    if not isinstance(keys, list):
      raise ValueError('{}: invalid keys for user {!r}'.format(
        filename, record['name']))
    result.append({'name': record['name'],
      'keys': [k for k in keys if isinstance(k, str)]})
  return result


def save_users(filename, users):
  ''' Writes a list of `{name, keys}` records to the user file. '''

  _write(filename, [{'name': u['name'], 'keys': list(u['keys'])} for u in users])


def load_repo_permissions(filename):
  ''' Parses the repository file and returns a list of `{name, path,
  users}` records or None if there is no data. *users* maps user names
  to permission strings which are passed through unchecked. '''

  records = _read(filename)
  if records is None:
    return None
  result = []
  for record in records:
    if not isinstance(record, dict) or not isinstance(record.get('name'), str) \
        or not isinstance(record.get('path'), str):
      raise ValueError('{}: invalid repository record {!r}'.format(
        filename, record))
    users = record.get('users') or {}
    if not isinstance(users, dict):
      raise ValueError('{}: invalid users for repository {!r}'.format(
        filename, record['name']))
    result.append({'name': record['name'], 'path': record['path'],
      'users': dict(users)})
  return result


def save_repo_permissions(filename, repos):
  ''' Writes a list of `{name, path, users}` records to the repository
  file. '''

  _write(filename, [{'name': r['name'], 'path': r['path'],
    'users': dict(r['users'])} for r in repos])
