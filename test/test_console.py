import errno

import pytest

from gitlite import console, repo, ssh


class FakeTerminal(object):

  def __init__(self, *lines):
    self.lines = list(lines)
    self.output = []

  def write(self, text):
    self.output.append(text)

  def readline(self):
    if not self.lines:
      return None
    return self.lines.pop(0)

  @property
  def text(self):
    return ''.join(self.output)


@pytest.fixture
def terminal():
  return FakeTerminal()


@pytest.fixture
def saves():
  return []


@pytest.fixture
def con(identities, repositories, terminal, saves):
  return console.Console(identities, repositories, terminal.write,
    terminal.readline, save=lambda: saves.append(True))


class TestUserCommands(object):

  def test_create_list_delete(self, con, terminal, identities, saves):
    assert con.command(['user', 'create', 'alice']) == 0
    assert identities.get_user('alice') is not None
    assert saves
    assert con.command(['user', 'create', 'alice']) == errno.EEXIST
    con.command(['user', 'list'])
    assert '  alice (0 keys)\n' in terminal.text
    assert con.command(['user', 'delete', 'alice']) == 0
    assert identities.get_user('alice') is None
    assert con.command(['user', 'delete', 'alice']) == errno.ENOENT

  @pytest.mark.parametrize('name', ['guest', 'admin', 'a/b'])
  def test_reserved_names(self, con, terminal, name):
    assert con.command(['user', 'create', name]) != 0
    assert 'error:' in terminal.text

  def test_guest_can_not_be_deleted(self, con):
    assert con.command(['user', 'delete', 'guest']) == errno.EPERM

  def test_keys(self, con, terminal, identities, new_key):
    key = new_key()
    con.command(['user', 'create', 'alice'])
    line = ssh.format_public_key(key) + ' alice@laptop'
    assert con.command(['user', 'addkey', 'alice'] + line.split()) == 0
    assert identities.authenticate(key).name == 'alice'
    assert con.command(['user', 'addkey', 'alice'] + line.split()) == errno.EEXIST
    con.command(['user', 'keys', 'alice'])
    assert '{} ssh-ed25519'.format(ssh.fingerprint(key)) in terminal.text
    assert con.command(['user', 'delkey', 'alice', ssh.fingerprint(key)]) == 0
    assert con.command(['user', 'delkey', 'alice', ssh.fingerprint(key)]) == errno.ENOENT

  def test_invalid_key(self, con):
    con.command(['user', 'create', 'alice'])
    assert con.command(['user', 'addkey', 'alice', 'ssh-rsa', 'garbage']) == errno.EINVAL

  def test_usage_error(self, con, terminal):
    assert con.command(['user', 'create']) == 2
    assert 'usage: user create' in terminal.text


class TestRepoCommands(object):

  def test_adduser_and_deluser(self, con, terminal, identities, repositories, track_repo):
    track_repo('p')
    identities.create_user('alice')
    assert con.command(['repo', 'adduser', 'p', 'alice', 'rw']) == 0
    assert repositories.check_permission('p', 'alice', True)
    con.command(['repo', 'list'])
    assert '  p [alice(rw)]\n' in terminal.text
    assert con.command(['repo', 'deluser', 'p', 'alice']) == 0
    assert repositories.get('p').users == {}

  def test_guest_read_only(self, con, repositories, track_repo):
    track_repo('p')
    assert con.command(['repo', 'adduser', 'p', 'guest', 'rw']) == errno.EPERM
    assert repositories.get('p').users == {}
    assert con.command(['repo', 'adduser', 'p', 'guest', 'r']) == 0
    assert repositories.get('p').users == {'guest': repo.PERM_READ}
    assert con.command(['repo', 'deluser', 'p', 'guest']) == 0
    assert con.command(['repo', 'deluser', 'p', 'guest']) == 0

  def test_unknown_user_or_repo(self, con, identities, track_repo):
    track_repo('p')
    assert con.command(['repo', 'adduser', 'p', 'alice', 'r']) == errno.ENOENT
    identities.create_user('alice')
    assert con.command(['repo', 'adduser', 'q', 'alice', 'r']) == errno.ENOENT
    assert con.command(['repo', 'adduser', 'p', 'alice', 'w']) == 2

  def test_create_invalid(self, con, terminal, repositories):
    assert con.command(['repo', 'create', '../evil']) != 0
    assert "invalid repository name '../evil'" in terminal.text
    assert repositories.list() == []

  def test_delete_requires_confirmation(self, con, terminal, repositories, track_repo):
    track_repo('p')
    terminal.lines = ['maybe', 'n']
    assert con.command(['repo', 'delete', 'p']) == 0
    assert repositories.get('p') is not None
    assert 'Please reply with yes/y or no/n.' in terminal.text
    terminal.lines = ['y']
    assert con.command(['repo', 'delete', 'p']) == 0
    assert repositories.get('p') is None
    assert con.command(['repo', 'delete', '-f', 'p']) == errno.ENOENT


class TestCmdloop(object):

  def test_session(self, identities, repositories):
    terminal = FakeTerminal('', '?', 'user create bob', 'bogus', 'user create "a b', 'quit',
      'user create carol')
    con = console.Console(identities, repositories, terminal.write, terminal.readline)
    assert con.cmdloop() == 0
    assert terminal.text.startswith('gitlite v')
    assert 'Available commands:' in terminal.text
    assert 'error: unknown command: bogus' in terminal.text
    assert 'Bye!' in terminal.text
    assert identities.get_user('bob') is not None
    assert identities.get_user('carol') is None
    assert terminal.lines == ['user create carol']

  def test_end_of_input(self, identities, repositories):
    terminal = FakeTerminal('user create bob')
    con = console.Console(identities, repositories, terminal.write, terminal.readline)
    assert con.cmdloop() == 0
    assert identities.get_user('bob') is not None

  def test_save_failure_is_reported(self, identities, repositories):
    def save():
      raise OSError(errno.EACCES, 'Permission denied')
    terminal = FakeTerminal()
    con = console.Console(identities, repositories, terminal.write,
      terminal.readline, save=save)
    assert con.command(['user', 'create', 'bob']) == 0
    assert 'error: failed to save data:' in terminal.text
