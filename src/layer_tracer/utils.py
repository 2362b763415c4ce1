#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import gzip
import hashlib
import json
import logging
import os
import posixpath
import tarfile
import traceback
from typing import NamedTuple

import attr

from commoncode import fileutils

TRACE = False

logger = logging.getLogger(__name__)
if TRACE:
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)


class ToDictMixin(object):
    """
    A mixin to add an to_dict() method to an attr-based class.
    """

    def to_dict(self, exclude_fields=()):
        if exclude_fields:
            filt = lambda attr, value: attr.name not in exclude_fields
        else:
            filt = lambda attr, value: True
        return attr.asdict(self, filter=filt)


def load_json(location):
    """
    Return the data loaded from a JSON file at `location`.
    """
    with open(location) as loc:
        data = json.load(loc)
    return data


def sha256_digest(location):
    """
    Return a SHA256 checksum for the file content at location.
    """
    if location and os.path.exists(location):
        sha256 = hashlib.sha256()
        with open(location, 'rb') as loc:
            for chunk in iter(lambda: loc.read(1024 * 1024), b''):
                sha256.update(chunk)
        return str(sha256.hexdigest())


def is_gzipped(location):
    with open(location, 'rb') as loc:
        return loc.read(2) == b'\x1f\x8b'


def uncompressed_sha256_digest(location):
    """
    Return a SHA256 checksum for the uncompressed content of the file at
    location, decompressing gzip files on the fly. This is the "diff_id" of a
    layer tarball that may be stored compressed.
    """
    if not location or not os.path.exists(location):
        return
    opener = gzip.open if is_gzipped(location) else open
    sha256 = hashlib.sha256()
    with opener(location, 'rb') as loc:
        for chunk in iter(lambda: loc.read(1024 * 1024), b''):
            sha256.update(chunk)
    return str(sha256.hexdigest())


def as_bare_id(string):
    """
    Return an id stripped from its leading checksum algorithm prefix if present.

    For example::
    >>> as_bare_id('sha256:abc')
    'abc'
    >>> as_bare_id('abc')
    'abc'
    """
    if not string:
        return string
    if string.startswith('sha256:'):
        _, _, string = string.partition('sha256:')
    return string


def clean_command(created_by):
    """
    Return a layer build command string cleaned from the shell prefix and the
    "#(nop)" marker found in a Docker image layer history `created_by`.

    For example::
    >>> clean_command('/bin/sh -c #(nop)  CMD ["/bin/sh"]')
    'CMD ["/bin/sh"]'
    >>> clean_command('/bin/sh -c apk add --no-cache curl')
    'apk add --no-cache curl'
    >>> clean_command(None)
    ''
    """
    command = (created_by or '').strip()
    if command.startswith('/bin/sh -c'):
        command = command[len('/bin/sh -c'):].strip()
    if command.startswith('#(nop)'):
        command = command[len('#(nop)'):].strip()
    return command


def normalize_path(path):
    """
    Return a rootfs-relative POSIX ``path`` without a leading slash and with
    "." and ".." segments collapsed. Parent segments never escape the root.

    For example::
    >>> normalize_path('/usr/lib/../share/./doc/')
    'usr/share/doc'
    >>> normalize_path('../../etc/passwd')
    'etc/passwd'
    >>> normalize_path('/')
    ''
    """
    path = fileutils.as_posixpath(path or '')
    path = posixpath.normpath('/' + path)
    return path.lstrip('/')


def lower_keys(mapping):
    """
    Return a new ``mapping`` modified such that all keys are lowercased strings.
    Fails with an Exception if a key is not a string-like obect.
    Perform this operation recursively on nested mapping.

    For example::
    >>> lower_keys({'baZ': 'Amd64', 'Foo': {'Bar': {'ABC': 'bAr'}}})
    {'baz': 'Amd64', 'foo': {'bar': {'abc': 'bAr'}}}
    """
    new_mapping = {}
    for key, value in mapping.items():
        if isinstance(value, dict):
            value = lower_keys(value)
        new_mapping[key.lower()] = value
    return new_mapping


class ExtractEvent(NamedTuple):
    """
    Represent an extraction event of interest. These are returned when running
    extract_tar
    """

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    # type of event: one of error, warning or info
    type: str
    # source path in the archive
    source: str
    # even message
    message: str

    def to_string(self):
        return f"{self.type}: {self.message}"


def is_relative_path(path):
    """
    Return True if ``path`` is a relative path.
    >>> is_relative_path('.wh..wh..opq')
    False
    >>> is_relative_path('.wh/../wh..opq')
    True
    >>> is_relative_path('../foor')
    True
    """
    return any(name == '..' for name in path.split('/'))


def extract_tar(location, target_dir, as_events=False, skip_symlinks=True):
    """
    Extract a tar archive at ``location`` in the ``target_dir`` directory.
    Return a list of ExtractEvent is ``as_events`` is True, or a list of message
    strings otherwise. This list can be empty. Skip symlinks and hardlinks if
    skip_symlinks is True.

    Ignore special device files.
    Do not preserve the permissions and owners.
    """
    if TRACE:
        logger.debug(f'extract_tar: {location} to {target_dir} skip_symlinks: {skip_symlinks}')

    fileutils.create_dir(target_dir)

    events = []
    with tarfile.open(location) as tarball:

        for tarinfo in tarball:
            if tarinfo.isdev() or tarinfo.ischr() or tarinfo.isblk() or tarinfo.isfifo() or tarinfo.sparse:
                msg = f'skipping unsupported {tarinfo.name} file type: block, chr, dev or sparse file'
                events.append(ExtractEvent(type=ExtractEvent.INFO, source=tarinfo.name, message=msg))
                continue

            if is_relative_path(tarinfo.name):
                msg = f'{location}: skipping unsupported {tarinfo.name} with relative path.'
                events.append(ExtractEvent(type=ExtractEvent.WARNING, source=tarinfo.name, message=msg))
                continue

            if skip_symlinks and (tarinfo.islnk() or tarinfo.issym()):
                if TRACE:
                    logger.debug(f'extract_tar: skipping link: {tarinfo.name} -> {tarinfo.linkname}')
                continue

            if tarinfo.name.startswith('/'):
                msg = f'{location}: absolute path name: {tarinfo.name} transformed in relative path.'
                events.append(ExtractEvent(type=ExtractEvent.WARNING, source=tarinfo.name, message=msg))
                tarinfo.name = tarinfo.name.lstrip('/')

            tarinfo.mode = 0o755

            try:
                tarball.extract(member=tarinfo, path=target_dir, set_attrs=False)
            except Exception:
                msg = f'{location}: failed to extract: {tarinfo.name}: {traceback.format_exc()}'
                events.append(ExtractEvent(type=ExtractEvent.ERROR, source=tarinfo.name, message=msg))

    if TRACE:
        for event in events:
            logger.debug(f'extract_tar: {event.to_string()}')

    if not as_events:
        events = [e.to_string() for e in events]
    return events
