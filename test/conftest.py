''' Shared fixtures for the gitlite tests. Keys are generated fresh for
every test, repositories are tracked from plain directories unless a
test explicitly needs `git`. '''

import os
import shutil

import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519
from twisted.conch.ssh import keys

from gitlite import auth, repo, ssh, storage


def make_key():
  return keys.Key(ed25519.Ed25519PrivateKey.generate())


@pytest.fixture
def new_key():
  ''' Returns a function that generates a new private key. '''
  return make_key


@pytest.fixture
def admin_key():
  return make_key()


@pytest.fixture
def data_path(tmp_path):
  path = tmp_path / 'data'
  path.mkdir()
  return str(path)


@pytest.fixture
def identities(admin_key):
  store = auth.IdentityStore()
  store.set_admin_key(admin_key.public())
  return store


@pytest.fixture
def repositories(data_path):
  return repo.RepositoryTable(data_path)


@pytest.fixture
def track_repo(repositories, tmp_path):
  ''' Returns a function that creates the directory of a repository and
  loads it into the `repositories` table with the specified permission
  strings, without running `git init`. '''

  def track(name, **users):
    path = repositories.get_repo_path(name)
    os.makedirs(path)
    filename = str(tmp_path / 'track.json')
    storage.save_repo_permissions(filename,
      [{'name': name, 'path': path, 'users': users}])
    assert repositories.load(filename) == 1
    return path

  return track


@pytest.fixture
def git():
  ''' Skips the test if `git` is not installed. '''

  path = shutil.which('git')
  if not path:
    pytest.skip('git is not installed')
  return path

