#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import logging
import posixpath
import re
from email.parser import HeaderParser
from urllib.parse import quote

from layer_tracer.inventory import FilesystemExtractor
from layer_tracer.inventory import InventoryItem

TRACE = False
logger = logging.getLogger(__name__)
if TRACE:
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)

"""
Built-in filesystem extractors for installed packages.
"""


def build_purl(type, name, version=None, namespace=None, qualifiers=None):
    """
    Return a package URL string built from its components.

    For example::
    >>> build_purl('deb', 'libc6', '2.36-9', namespace='debian', qualifiers={'arch': 'amd64'})
    'pkg:deb/debian/libc6@2.36-9?arch=amd64'
    >>> build_purl('deb', 'bash', '1:5.2')
    'pkg:deb/bash@1%3A5.2'
    """
    purl = f'pkg:{type}/'
    if namespace:
        purl += quote(namespace, safe='') + '/'
    purl += quote(name, safe='')
    if version:
        purl += '@' + quote(version, safe='')
    qualifiers = sorted((k, v) for k, v in (qualifiers or {}).items() if v)
    if qualifiers:
        purl += '?' + '&'.join(f'{k}={quote(v, safe="")}' for k, v in qualifiers)
    return purl


class PythonMetadataExtractor(FilesystemExtractor):
    """
    Extract installed Python distributions from their "METADATA" or
    "PKG-INFO" files.
    """
    name = 'python/metadata'
    version = 1

    def file_required(self, path):
        parent_dir, file_name = posixpath.split(path)
        if file_name == 'METADATA':
            return parent_dir.endswith('.dist-info')
        if file_name == 'PKG-INFO':
            return parent_dir.endswith('.egg-info')
        return False

    def extract(self, fs, path):
        headers = HeaderParser().parsestr(fs.read_text(path))
        name = headers.get('Name')
        version = headers.get('Version')
        if not name or not version:
            if TRACE: logger.debug(f'PythonMetadataExtractor: no name or version in: {path}')
            return []
        return [InventoryItem(
            name=name.strip(),
            version=version.strip(),
            locations=[path],
            extractor=self,
        )]

    def to_purl(self, item):
        # PEP 503 normalized name
        name = re.sub(r'[-_.]+', '-', item.name).lower()
        return build_purl('pypi', name, item.version)


DPKG_STATUS = 'var/lib/dpkg/status'
DPKG_STATUS_DIR = 'var/lib/dpkg/status.d/'
OS_RELEASE = 'etc/os-release'


def parse_dpkg_status(text):
    """
    Yield a mapping of {field name: value} for each paragraph of a dpkg
    status `text`. Field names are lowercased. Only the first line of
    multi-line field values is kept.
    """
    fields = {}
    for line in text.splitlines():
        if not line.strip():
            if fields:
                yield fields
            fields = {}
            continue
        if line[0] in ' \t':
            # continuation line
            continue
        name, sep, value = line.partition(':')
        if sep:
            fields[name.strip().lower()] = value.strip()
    if fields:
        yield fields


def get_os_release_id(fs):
    """
    Return the ID field of the /etc/os-release of the `fs` filesystem view or
    None.
    """
    if not fs.is_file(OS_RELEASE):
        return
    for line in fs.read_text(OS_RELEASE).splitlines():
        key, sep, value = line.partition('=')
        if sep and key.strip() == 'ID':
            return value.strip().strip('"\'') or None


class DpkgStatusExtractor(FilesystemExtractor):
    """
    Extract installed Debian packages from a dpkg status database.
    """
    name = 'os/dpkg'
    version = 1

    def file_required(self, path):
        return path == DPKG_STATUS or (
            path.startswith(DPKG_STATUS_DIR) and not path.endswith('.md5sums')
        )

    def extract(self, fs, path):
        distro = get_os_release_id(fs) or 'debian'
        items = []
        for fields in parse_dpkg_status(fs.read_text(path)):
            name = fields.get('package')
            version = fields.get('version')
            if not name or not version:
                continue

            # status is "want flag status", e.g. "install ok installed"
            status = fields.get('status', 'install ok installed').split()
            if not status or status[-1] != 'installed':
                continue

            source = fields.get('source') or ''
            items.append(InventoryItem(
                name=name,
                version=version,
                locations=[path],
                extractor=self,
                metadata=dict(
                    distro=distro,
                    architecture=fields.get('architecture'),
                    source=source.split()[0] if source else None,
                ),
            ))
        return items

    def to_purl(self, item):
        return build_purl(
            type='deb',
            namespace=item.metadata.get('distro') or 'debian',
            name=item.name,
            version=item.version,
            qualifiers=dict(arch=item.metadata.get('architecture')),
        )


def get_default_extractors():
    return [
        PythonMetadataExtractor(),
        DpkgStatusExtractor(),
    ]
