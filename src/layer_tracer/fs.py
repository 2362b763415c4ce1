#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import os

import attr

from layer_tracer.utils import normalize_path

"""
Read-only filesystem views used to look at the cumulative root filesystem of a
chain layer. Paths are always rootfs-relative POSIX paths such as
"var/lib/dpkg/status" and a leading slash is ignored.
"""


@attr.attributes(frozen=True)
class DirectoryFS(object):
    """
    A read-only view on a root filesystem extracted in the ``root`` directory.
    """

    root = attr.attrib(
        metadata=dict(doc='Absolute location of the root directory of this view.')
    )

    def location(self, path):
        """
        Return the absolute location of the rootfs-relative ``path``.
        """
        path = normalize_path(path)
        if not path:
            return self.root
        return os.path.join(self.root, *path.split('/'))

    def exists(self, path):
        return os.path.exists(self.location(path))

    def is_file(self, path):
        return os.path.isfile(self.location(path))

    def open(self, path, mode='rb'):
        """
        Return a file-like object open for reading the file at ``path``.
        Raise a ValueError for any writing ``mode``.
        """
        if any(m in mode for m in 'wax+'):
            raise ValueError(f'Read-only filesystem: cannot open {path!r} with mode {mode!r}')
        if 'b' in mode:
            return open(self.location(path), mode)
        return open(self.location(path), mode, encoding='utf-8', errors='replace')

    def read_text(self, path):
        with self.open(path, mode='r') as inp:
            return inp.read()

    def walk(self):
        """
        Yield the rootfs-relative path of each file in this view, sorted.
        Symlinks are not followed.
        """
        paths = []
        for top, _dirs, files in os.walk(self.root):
            for name in files:
                location = os.path.join(top, name)
                paths.append(normalize_path(os.path.relpath(location, self.root)))
        yield from sorted(paths)
