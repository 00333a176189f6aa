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
''' A private, self-hosted Git server over SSH. Users are identified by
their public keys, repositories and permissions are managed from an
administration console over the same SSH port. '''

__author__ = 'Niklas Rosenstein <rosensteinniklas(at)gmail.com>'
__version__ = '1.0.0'

from .auth import IdentityStore, Identity, User
from .auth import IDENTITY_UNKNOWN, IDENTITY_NORMAL, IDENTITY_ADMIN
from .repo import RepositoryTable, Repository
from .repo import PERM_NONE, PERM_READ, PERM_WRITE, GUEST_NAME
from .git import GitCommand, parse_command
from .session import SessionRouter, SessionRequest
