#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import os

from commoncode.testcase import FileBasedTesting

from layer_tracer import extractors
from layer_tracer.extraction import scan_filesystem
from layer_tracer.fs import DirectoryFS

from utilities import write_files


class TestExtractors(FileBasedTesting):
    test_data_dir = os.path.join(os.path.dirname(__file__), 'data')

    def get_rootfs(self):
        return DirectoryFS(root=self.get_test_loc('extractors/rootfs'))

    def test_DpkgStatusExtractor_extract(self):
        extractor = extractors.DpkgStatusExtractor()
        items = extractor.extract(self.get_rootfs(), 'var/lib/dpkg/status')
        results = [(i.name, i.version, extractor.to_purl(i)) for i in items]
        expected = [
            ('base-files', '12.4+deb12u5', 'pkg:deb/debian/base-files@12.4%2Bdeb12u5?arch=amd64'),
            ('libc6', '2.36-9+deb12u4', 'pkg:deb/debian/libc6@2.36-9%2Bdeb12u4?arch=amd64'),
            ('bash', '5.2.15-2+b2', 'pkg:deb/debian/bash@5.2.15-2%2Bb2?arch=amd64'),
        ]
        assert results == expected
        assert items[1].metadata['source'] == 'glibc'
        assert items[2].metadata['source'] == 'bash'
        assert all(i.locations == ['var/lib/dpkg/status'] for i in items)

    def test_DpkgStatusExtractor_file_required(self):
        extractor = extractors.DpkgStatusExtractor()
        assert extractor.file_required('var/lib/dpkg/status')
        assert extractor.file_required('var/lib/dpkg/status.d/libc6')
        assert not extractor.file_required('var/lib/dpkg/status.d/libc6.md5sums')
        assert not extractor.file_required('var/lib/dpkg/status-old')

    def test_DpkgStatusExtractor_uses_os_release_id_as_namespace(self):
        root = self.get_temp_dir()
        write_files(root, {
            'etc/os-release': 'NAME="Ubuntu"\nID=ubuntu\n',
            'var/lib/dpkg/status': 'Package: zlib1g\nStatus: install ok installed\nVersion: 1:1.2.13\n',
        })
        extractor = extractors.DpkgStatusExtractor()
        items = extractor.extract(DirectoryFS(root=root), 'var/lib/dpkg/status')
        assert [extractor.to_purl(i) for i in items] == ['pkg:deb/ubuntu/zlib1g@1%3A1.2.13']

    def test_PythonMetadataExtractor(self):
        extractor = extractors.PythonMetadataExtractor()
        fs = self.get_rootfs()
        metadata = 'usr/lib/python3/dist-packages/attrs-23.1.0.dist-info/METADATA'
        pkg_info = 'usr/lib/python3/dist-packages/six.egg-info/PKG-INFO'
        assert extractor.file_required(metadata)
        assert extractor.file_required(pkg_info)
        assert not extractor.file_required('usr/lib/python3/METADATA')

        items = extractor.extract(fs, metadata) + extractor.extract(fs, pkg_info)
        results = [(i.name, i.version, extractor.to_purl(i)) for i in items]
        expected = [
            ('attrs', '23.1.0', 'pkg:pypi/attrs@23.1.0'),
            ('Six_Compat', '1.16.0', 'pkg:pypi/six-compat@1.16.0'),
        ]
        assert results == expected

    def test_PythonMetadataExtractor_ignores_metadata_without_version(self):
        root = self.get_temp_dir()
        write_files(root, {'foo.dist-info/METADATA': 'Metadata-Version: 2.1\nName: foo\n'})
        extractor = extractors.PythonMetadataExtractor()
        assert extractor.extract(DirectoryFS(root=root), 'foo.dist-info/METADATA') == []

    def test_scan_filesystem_with_default_extractors(self):
        items, stats = scan_filesystem(self.get_rootfs(), extractors.get_default_extractors())
        results = sorted(i.purl for i in items)
        expected = [
            'pkg:deb/debian/base-files@12.4%2Bdeb12u5?arch=amd64',
            'pkg:deb/debian/bash@5.2.15-2%2Bb2?arch=amd64',
            'pkg:deb/debian/libc6@2.36-9%2Bdeb12u4?arch=amd64',
            'pkg:pypi/attrs@23.1.0',
            'pkg:pypi/six-compat@1.16.0',
        ]
        assert results == expected
        assert stats.errors == []

    def test_build_purl(self):
        assert extractors.build_purl('generic', 'foo') == 'pkg:generic/foo'
        assert extractors.build_purl('deb', 'foo', '1.0', qualifiers={'arch': None}) == 'pkg:deb/foo@1.0'
