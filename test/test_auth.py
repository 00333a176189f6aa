import pytest

from gitlite import auth, ssh, storage


class TestAuthenticate(object):

  def test_unknown(self, identities, new_key):
    identity = identities.authenticate(new_key())
    assert identity.kind == auth.IDENTITY_UNKNOWN
    assert identity.user is None
    assert identity.name == ''
    assert not identity.is_admin

  def test_admin(self, identities, admin_key):
    identity = identities.authenticate(admin_key.public())
    assert identity.kind == auth.IDENTITY_ADMIN
    assert identity.is_admin
    assert identity.name == auth.ADMIN_NAME

  def test_admin_is_checked_first(self, identities, admin_key):
    identities.create_user('alice')
    identities.add_key_to_user('alice', admin_key.public())
    assert identities.authenticate(admin_key).is_admin

  def test_user(self, identities, new_key):
    key = new_key()
    identities.create_user('alice')
    identities.add_key_to_user('alice', key.public())
    identity = identities.authenticate(key)
    assert identity.kind == auth.IDENTITY_NORMAL
    assert identity.name == 'alice'

  def test_replace_admin_key(self, identities, admin_key, new_key):
    key = new_key()
    identities.set_admin_key(key.public())
    assert identities.authenticate(key).is_admin
    assert identities.authenticate(admin_key).kind == auth.IDENTITY_UNKNOWN

  def test_without_admin_key(self, admin_key):
    store = auth.IdentityStore()
    assert store.admin_key is None
    assert store.authenticate(admin_key).kind == auth.IDENTITY_UNKNOWN


class TestUsers(object):

  def test_create_and_delete(self, identities):
    identities.create_user('alice')
    assert identities.get_user('alice').name == 'alice'
    with pytest.raises(auth.UserExists):
      identities.create_user('alice')
    identities.delete_user('alice')
    assert identities.get_user('alice') is None
    with pytest.raises(auth.UnknownUser):
      identities.delete_user('alice')

  @pytest.mark.parametrize('name', ['admin', 'guest'])
  def test_reserved_name(self, identities, name):
    with pytest.raises(auth.ReservedUserName):
      identities.create_user(name)

  @pytest.mark.parametrize('name', ['', 'a b', 'a/b', '../x', 'bob\n'])
  def test_invalid_name(self, identities, name):
    with pytest.raises(auth.InvalidUserName):
      identities.create_user(name)

  def test_returns_copies(self, identities, new_key):
    identities.create_user('alice')
    user = identities.get_user('alice')
    user.keys.append(new_key())
    assert identities.get_user('alice').keys == []
    identities.list_users()[0].name = 'mallory'
    assert [u.name for u in identities.list_users()] == ['alice']


class TestKeys(object):

  def test_add_and_remove(self, identities, new_key):
    key = new_key().public()
    identities.create_user('alice')
    identities.add_key_to_user('alice', key)
    assert identities.get_user('alice').fingerprints() == [ssh.fingerprint(key)]
    identities.remove_key_from_user('alice', ssh.fingerprint(key))
    assert identities.get_user('alice').keys == []
    assert identities.authenticate(key).kind == auth.IDENTITY_UNKNOWN

  def test_duplicate_key(self, identities, new_key):
    key = new_key().public()
    identities.create_user('alice')
    identities.add_key_to_user('alice', key)
    with pytest.raises(auth.KeyExists):
      identities.add_key_to_user('alice', key)

  def test_key_of_another_user(self, identities, new_key):
    key = new_key().public()
    identities.create_user('alice')
    identities.create_user('bob')
    identities.add_key_to_user('alice', key)
    with pytest.raises(auth.KeyExists) as excinfo:
      identities.add_key_to_user('bob', key)
    assert 'alice' in str(excinfo.value)
    assert identities.get_user('bob').keys == []

  def test_unknown_user(self, identities, new_key):
    with pytest.raises(auth.UnknownUser):
      identities.add_key_to_user('alice', new_key())
    with pytest.raises(auth.UnknownUser):
      identities.remove_key_from_user('alice', 'SHA256:x')

  def test_unknown_key(self, identities):
    identities.create_user('alice')
    with pytest.raises(auth.KeyNotFound):
      identities.remove_key_from_user('alice', 'SHA256:x')


class TestPersistence(object):

  def test_round_trip(self, identities, new_key, tmp_path):
    key1, key2 = new_key(), new_key()
    identities.create_user('alice')
    identities.create_user('bob')
    identities.add_key_to_user('alice', key1.public())
    identities.add_key_to_user('alice', key2.public())
    path = str(tmp_path / 'users.json')
    identities.save(path)

    store = auth.IdentityStore()
    assert store.load(path) == 2
    assert store.authenticate(key2).name == 'alice'
    assert store.get_user('alice').fingerprints() == \
      [ssh.fingerprint(key1), ssh.fingerprint(key2)]
    assert store.get_user('bob').keys == []

  def test_load_missing_file(self, tmp_path):
    assert auth.IdentityStore().load(str(tmp_path / 'users.json')) == 0

  def test_load_skips_invalid_records(self, tmp_path, new_key):
    key = new_key()
    line = ssh.format_public_key(key)
    guest_key = new_key()
    path = str(tmp_path / 'users.json')
    storage.save_users(path, [
      {'name': 'admin', 'keys': []},
      {'name': 'guest', 'keys': [ssh.format_public_key(guest_key)]},
      {'name': 'bad name', 'keys': []},
      {'name': 'alice', 'keys': ['garbage', line]},
      {'name': 'bob', 'keys': [line]},
    ])

    warnings = []
    store = auth.IdentityStore()
    assert store.load(path, warn=warnings.append) == 2
    assert [u.name for u in sorted(store.list_users(), key=lambda u: u.name)] \
      == ['alice', 'bob']
    assert store.get_user('alice').fingerprints() == [ssh.fingerprint(key)]
    assert store.get_user('bob').keys == []
    assert store.authenticate(guest_key).kind == auth.IDENTITY_UNKNOWN
    assert store.get_user('guest') is None
    assert len(warnings) == 4
    assert 'already registered for user alice' in warnings[-1]
