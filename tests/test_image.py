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
import os

from commoncode.testcase import FileBasedTesting

from layer_tracer import chain
from layer_tracer.image import Image
from layer_tracer.image import Layer
from layer_tracer.image import assign_history_to_layers

from utilities import make_docker_image
from utilities import make_layer_tarball
from utilities import sha256


class TestImages(FileBasedTesting):
    test_data_dir = os.path.join(os.path.dirname(__file__), 'data')

    def test_Image(self):
        try:
            Image()
            self.fail('Exception not caught')
        except TypeError as e:
            assert str(e) == 'Image.extracted_location is a required argument'

    def test_Image_get_images_from_dir_docker(self):
        test_dir = self.get_temp_dir()
        image_id = make_docker_image(
            test_dir,
            layers=[{'hello': 'hello'}, {'etc/hostname': 'foo'}],
            commands=[
                '/bin/sh -c #(nop) ADD file:8ec69d882e7f29f0652 in / ',
                '/bin/sh -c echo foo > /etc/hostname',
            ],
        )
        images = Image.get_images_from_dir(test_dir)
        assert len(images) == 1
        img = images[0]
        assert img.image_format == 'docker'
        assert img.image_id == image_id
        assert img.tags == ['test/image:1.0']
        assert img.os == 'linux'
        assert img.architecture == 'amd64'
        assert len(img.layers) == 2

        bottom, top = img.layers
        assert bottom.sha256 == sha256(os.path.join(test_dir, 'layer0', 'layer.tar'))
        assert bottom.diff_id == f'sha256:{bottom.sha256}'
        assert bottom.layer_id == bottom.sha256
        assert bottom.command == 'ADD file:8ec69d882e7f29f0652 in /'
        assert top.command == 'echo foo > /etc/hostname'

    def test_Image_get_images_from_dir_with_verify_fails_if_invalid_checksum(self):
        test_dir = self.get_temp_dir()
        make_docker_image(test_dir, layers=[{'hello': 'hello'}])
        make_layer_tarball(os.path.join(test_dir, 'layer0', 'layer.tar'), {'hello': 'bye'})
        try:
            Image.get_images_from_dir(test_dir, verify=True)
            self.fail('Exception not raised')
        except Exception as e:
            assert str(e).startswith('Layer archive: SHA256:')

        images = Image.get_images_from_dir(test_dir, verify=False)
        assert len(images[0].layers) == 1

    def test_Image_get_images_from_dir_fails_on_unknown_format(self):
        test_dir = self.get_temp_dir()
        try:
            Image.get_images_from_dir(test_dir)
            self.fail('Exception not raised')
        except Exception as e:
            assert str(e).startswith('Unknown container image format None')

    def make_oci_image(self, files, compress=False):
        """
        Write an OCI image layout with a single layer of `files` in a new
        directory and return a tuple of (layout directory, config sha256,
        layer diff_id sha256).
        """
        test_dir = self.get_temp_dir()
        blobs_dir = os.path.join(test_dir, 'blobs', 'sha256')
        os.makedirs(blobs_dir)

        def write_blob(data):
            blob_sha256 = hashlib.sha256(data).hexdigest()
            with open(os.path.join(blobs_dir, blob_sha256), 'wb') as out:
                out.write(data)
            return blob_sha256

        layer_loc = os.path.join(self.get_temp_dir(), 'layer.tar')
        make_layer_tarball(layer_loc, files)
        with open(layer_loc, 'rb') as inp:
            layer_data = inp.read()
        diff_id_sha256 = hashlib.sha256(layer_data).hexdigest()

        if compress:
            layer_data = gzip.compress(layer_data)
            layer_media_type = 'application/vnd.oci.image.layer.v1.tar+gzip'
        else:
            layer_media_type = 'application/vnd.oci.image.layer.v1.tar'
        layer_sha256 = write_blob(layer_data)

        config = {
            'architecture': 'arm64',
            'os': 'linux',
            'rootfs': {'type': 'layers', 'diff_ids': [f'sha256:{diff_id_sha256}']},
            'history': [{'created_by': '/bin/sh -c #(nop) ADD file:abc in / '}],
        }
        config_sha256 = write_blob(json.dumps(config).encode('utf-8'))

        manifest = {
            'schemaVersion': 2,
            'config': {
                'mediaType': 'application/vnd.oci.image.config.v1+json',
                'digest': f'sha256:{config_sha256}',
            },
            'layers': [{
                'mediaType': layer_media_type,
                'digest': f'sha256:{layer_sha256}',
            }],
        }
        manifest_sha256 = write_blob(json.dumps(manifest).encode('utf-8'))

        index = {
            'schemaVersion': 2,
            'manifests': [{
                'mediaType': 'application/vnd.oci.image.manifest.v1+json',
                'digest': f'sha256:{manifest_sha256}',
                'annotations': {'org.opencontainers.image.ref.name': 'latest'},
            }],
        }
        with open(os.path.join(test_dir, 'index.json'), 'w') as out:
            json.dump(index, out)
        with open(os.path.join(test_dir, 'oci-layout'), 'w') as out:
            json.dump({'imageLayoutVersion': '1.0.0'}, out)

        return test_dir, config_sha256, diff_id_sha256

    def test_Image_get_images_from_dir_oci(self):
        test_dir, config_sha256, diff_id_sha256 = self.make_oci_image({'hello': 'hello'})
        images = Image.get_images_from_dir(test_dir)
        assert len(images) == 1
        img = images[0]
        assert img.image_format == 'oci'
        assert img.image_id == config_sha256
        assert img.tags == ['latest']
        assert img.architecture == 'arm64'
        assert [l.sha256 for l in img.layers] == [diff_id_sha256]
        assert img.layers[0].command == 'ADD file:abc in /'

    def test_Image_get_images_from_dir_oci_with_gzipped_layers(self):
        test_dir, _config_sha256, diff_id_sha256 = self.make_oci_image(
            {'etc/hostname': 'foo'}, compress=True)
        img = Image.get_images_from_dir(test_dir, verify=True)[0]
        layer = img.layers[0]
        assert layer.diff_id == f'sha256:{diff_id_sha256}'
        assert layer.sha256 != sha256(layer.archive_location)

        chain_layers = chain.build_chain_layers(img, self.get_temp_dir())
        assert list(chain_layers[0].fs.walk()) == ['etc/hostname']

    def test_Layer_sha256_is_computed_on_uncompressed_content(self):
        layer_loc = os.path.join(self.get_temp_dir(), 'layer.tar')
        make_layer_tarball(layer_loc, {'hello': 'hello'})
        expected = sha256(layer_loc)

        gzipped_loc = layer_loc + '.gz'
        with open(layer_loc, 'rb') as inp, open(gzipped_loc, 'wb') as out:
            out.write(gzip.compress(inp.read()))

        assert Layer(archive_location=layer_loc).sha256 == expected
        assert Layer(archive_location=gzipped_loc).sha256 == expected

    def test_assign_history_to_layers_skips_empty_layers_and_misaligned_history(self):
        test_dir = self.get_temp_dir()
        make_docker_image(test_dir, layers=[{'hello': 'hello'}])
        img = Image.get_images_from_dir(test_dir)[0]
        layer = img.layers[0]

        history = [
            {'created_by': 'FROM scratch', 'empty_layer': True},
            {'Created_By': 'COPY hello /', 'Author': 'me'},
        ]
        assign_history_to_layers(history, [layer])
        assert layer.created_by == 'COPY hello /'
        assert layer.author == 'me'

        assign_history_to_layers([{'created_by': 'a'}, {'created_by': 'b'}], [layer])
        assert layer.created_by == 'COPY hello /'
