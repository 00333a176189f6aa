import os
import stat

import pytest

from gitlite import git


class TestParseCommand(object):

  @pytest.mark.parametrize('raw, operation, repo_path', [
    ("git-upload-pack 'project.git'", 'git-upload-pack', 'project.git'),
    ("git-upload-pack '/project.git'", 'git-upload-pack', 'project.git'),
    ('git-receive-pack "team/project.git"', 'git-receive-pack', 'team/project.git'),
    ('git-receive-pack /a_b-c/d.git', 'git-receive-pack', 'a_b-c/d.git'),
    (b"git-upload-pack 'x.git'\n", 'git-upload-pack', 'x.git'),
  ])
  def test_valid(self, raw, operation, repo_path):
    command = git.parse_command(raw)
    assert command.operation == operation
    assert command.repo_path == repo_path
    assert command.is_write == (operation == git.RECEIVE_PACK)

  @pytest.mark.parametrize('raw', ['', 'git-upload-pack', "git-upload-pack 'x.git",
    b'git-upload-pack \xff.git'])
  def test_invalid_format(self, raw):
    with pytest.raises(git.InvalidFormat):
      git.parse_command(raw)

  @pytest.mark.parametrize('raw', ["git-upload-archive 'x.git'", "sh -c 'id'",
    "/usr/bin/git-upload-pack 'x.git'"])
  def test_not_allowed(self, raw):
    with pytest.raises(git.CommandNotAllowed) as excinfo:
      git.parse_command(raw)
    assert str(excinfo.value).startswith('command not allowed: ')

  @pytest.mark.parametrize('repo_path', ["'../x.git'", "'//x.git'", "'x'",
    "'a b.git'", "'x.git; rm -rf /'", "'x.git'\"", "'x/.git'", "'x.git\n'",
    "'$(id).git'"])
  def test_invalid_repo_path(self, repo_path):
    with pytest.raises(git.CommandError):
      git.parse_command('git-upload-pack ' + repo_path)

  def test_error_messages(self):
    with pytest.raises(git.InvalidRepoPath) as excinfo:
      git.parse_command("git-upload-pack '../x.git'")
    assert str(excinfo.value) == 'invalid repo path: ../x.git'
    with pytest.raises(git.InvalidFormat) as excinfo:
      git.parse_command('git-upload-pack')
    assert str(excinfo.value) == 'invalid command format'


class TestProcessArgs(object):

  def test_search_path(self, tmp_path):
    executable = tmp_path / git.UPLOAD_PACK
    executable.write_text('#!/bin/sh\n')
    executable.chmod(executable.stat().st_mode | stat.S_IXUSR)
    command = git.parse_command("git-upload-pack 'p.git'")
    path, args = git.process_args(command, '/srv/p.git', [str(tmp_path)])
    assert path == str(executable)
    assert args == [git.UPLOAD_PACK, '/srv/p.git']

  def test_not_found(self, tmp_path, monkeypatch):
    monkeypatch.setenv('PATH', str(tmp_path))
    command = git.parse_command("git-receive-pack 'p.git'")
    with pytest.raises(OSError):
      git.process_args(command, '/srv/p.git', [os.path.join(str(tmp_path), 'bin')])
