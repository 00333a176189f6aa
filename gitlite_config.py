# -*- mode: python; tab-width: 2; coding: utf8 -*-
# gitlite configuration file

import os

port = int(os.environ.get('GITLITE_PORT') or 2222)
interface = os.environ.get('GITLITE_INTERFACE', '')
data_path = os.environ.get('GITLITE_DATA') or 'data'

# Directories that are searched for git, git-upload-pack and
# git-receive-pack before the PATH.
git_bin_path = None

# Number of administration consoles that may be open at the same time,
# each one occupies a worker thread.
max_consoles = int(os.environ.get('GITLITE_MAX_CONSOLES') or 4)
