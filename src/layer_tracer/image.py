#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import logging
import os

import attr

from layer_tracer import MANIFEST_JSON_FILE
from layer_tracer import utils
from layer_tracer.utils import ToDictMixin
from layer_tracer.utils import as_bare_id
from layer_tracer.utils import load_json
from layer_tracer.utils import sha256_digest

TRACE = False
logger = logging.getLogger(__name__)
if TRACE:
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)

"""
Objects to load Docker and OCI images and their layers from an image layout
extracted on disk.

The objects supported here are:
- Image: which is a container image that contains a config and layers
  - Layer: which is a rootfs slice or "diff" stored as a tarball

The Docker Image Specifications are at:
- https://github.com/moby/moby/blob/master/image/spec/v1.2.md

The OCI specs:
- https://github.com/opencontainers/image-spec/blob/master/image-layout.md
- https://github.com/opencontainers/image-spec/blob/master/config.md
"""


@attr.attributes
class Layer(ToDictMixin):
    """
    A layer object represents a slice of a root filesystem in a container image.
    """

    archive_location = attr.attrib(
        default=None,
        metadata=dict(doc='Absolute location of this layer tarball.')
    )

    extracted_location = attr.attrib(
        default=None,
        metadata=dict(doc=
            'Absolute directory location where this layer is extracted.'
        )
    )

    sha256 = attr.attrib(
        default=None,
        metadata=dict(doc=
            'SHA256 of the uncompressed layer tarball. This is also the layer '
            '"diff_id".'
        )
    )

    layer_id = attr.attrib(
        default=None,
        metadata=dict(doc='Id for this layer, set to its sha256.')
    )

    size = attr.attrib(
        default=0,
        metadata=dict(doc='Size in byte of the layer archive')
    )

    author = attr.attrib(
        default=None,
        metadata=dict(doc='Author of this layer.')
    )

    created = attr.attrib(
        default=None,
        metadata=dict(doc='Date/timestamp for when this layer was created.')
    )

    created_by = attr.attrib(
        default=None,
        metadata=dict(doc='Command used to create this layer.')
    )

    comment = attr.attrib(
        default=None,
        metadata=dict(doc='A comment for this layer.')
    )

    def __attrs_post_init__(self, *args, **kwargs):
        if not self.archive_location:
            raise TypeError('Layer.archive_location is a required argument')

        if not self.sha256:
            self.sha256 = utils.uncompressed_sha256_digest(self.archive_location)
        self.layer_id = self.sha256

        if not self.size:
            self.size = os.path.getsize(self.archive_location)

    @property
    def diff_id(self):
        return f'sha256:{self.sha256}'

    @property
    def command(self):
        return utils.clean_command(self.created_by)

    def extract(self, extracted_location):
        """
        Extract this layer archive in the `extracted_location` directory and set
        this Layer ``extracted_location`` attribute to ``extracted_location``.
        """
        self.extracted_location = extracted_location
        return utils.extract_tar(
            location=self.archive_location,
            target_dir=extracted_location,
        )


@attr.attributes
class Image(ToDictMixin):
    """
    A container image with pointers to its layers.
    Image objects can be created from these inputs:
    - an image tarball in docker format (e.g. "docker save").
    - a directory that contains an extracted image tarball in Docker or OCI
      layout.
    """

    extracted_location = attr.attrib(
        default=None,
        metadata=dict(doc=
            'Absolute directory location where this image is extracted.'
        )
    )

    archive_location = attr.attrib(
        default=None,
        metadata=dict(doc=
            'Absolute location of this image original archive. '
            'May be empty if this was created from an extracted directory.'
        )
    )

    image_format = attr.attrib(
        default=None,
        metadata=dict(doc='Format of this image as of one of: "docker" or "oci".')
    )

    image_id = attr.attrib(
        default=None,
        metadata=dict(doc=
            'Id for this image. This is the sha256 of the config JSON file.'
        )
    )

    tags = attr.attrib(
        default=attr.Factory(list),
        metadata=dict(doc='List of tags for this image.')
    )

    os = attr.attrib(
        default=None,
        metadata=dict(doc='Operating system.')
    )

    architecture = attr.attrib(
        default=None,
        metadata=dict(doc='Architecture.')
    )

    layers = attr.attrib(
        default=attr.Factory(list),
        metadata=dict(doc='List of Layer objects ordered from bottom to top.')
    )

    def __attrs_post_init__(self, *args, **kwargs):
        if not self.extracted_location:
            raise TypeError('Image.extracted_location is a required argument')

        if not self.image_format:
            self.image_format = self.find_format(self.extracted_location)

    @staticmethod
    def get_images_from_tarball(archive_location, extracted_location, verify=True):
        """
        Return a list of Images found in the tarball at `archive_location` that
        will be extracted to `extracted_location`.

        If `verify` is True, check the config and layers checksums.
        """
        if TRACE: logger.debug(f'get_images_from_tarball: {archive_location} to: {extracted_location}')

        utils.extract_tar(
            location=archive_location,
            target_dir=extracted_location,
            skip_symlinks=False,
        )

        return Image.get_images_from_dir(
            extracted_location=extracted_location,
            archive_location=archive_location,
            verify=verify,
        )

    @staticmethod
    def get_images_from_dir(extracted_location, archive_location=None, verify=True):
        """
        Return a list of Image found in the directory at `extracted_location`
        that can be either a in "docker save" or OCI format.

        If `verify` is True, check the config and layers checksums.
        """
        if not os.path.isdir(extracted_location):
            raise Exception(f'Not a directory: {extracted_location}')

        image_format = Image.find_format(extracted_location)
        if TRACE: logger.debug(f'get_images_from_dir: {extracted_location} format: {image_format}')

        if image_format == 'docker':
            return Image.get_docker_images_from_dir(
                extracted_location=extracted_location,
                archive_location=archive_location,
                verify=verify,
            )

        if image_format == 'oci':
            return Image.get_oci_images_from_dir(
                extracted_location=extracted_location,
                archive_location=archive_location,
                verify=verify,
            )

        raise Exception(
            f'Unknown container image format {image_format} '
            f'at {extracted_location}'
        )

    @staticmethod
    def find_format(extracted_location):
        """
        Return the format of the image at ``extracted_location`` as one of:
        "docker" or "oci" or None if unknown.
        """
        clue_files_by_image_format = {
            'docker': ('manifest.json',),
            'oci': ('blobs', 'index.json', 'oci-layout',)
        }

        files = os.listdir(extracted_location)
        for image_format, clues in clue_files_by_image_format.items():
            if all(c in files for c in clues):
                return image_format

    @staticmethod
    def get_docker_images_from_dir(extracted_location, archive_location=None, verify=True):
        """
        Return a list of Image objects found in a "docker save" layout at
        `extracted_location`. The manifest.json contains a list of mappings
        such as:

            {'Config': '7043867122e704683c9eaccd7e26abcd.json',
             'Layers': ['768d4f50f65f00831244703e57f6413/layer.tar', ...]
             'RepoTags': ['user/image:version'],
            }
        """
        manifest_loc = os.path.join(extracted_location, MANIFEST_JSON_FILE)
        if not os.path.exists(manifest_loc):
            raise Exception(f'manifest.json file missing in {extracted_location}')

        images = []
        for manifest_config in load_json(manifest_loc):
            manifest_config = utils.lower_keys(manifest_config)

            config_file = manifest_config.get('config') or ''
            config_file_loc = os.path.join(extracted_location, config_file)
            if not os.path.exists(config_file_loc):
                raise Exception(
                    f'Invalid configuration. Missing Config file: {config_file_loc}')

            image_id, _ = os.path.splitext(os.path.basename(config_file_loc))
            image_id = as_bare_id(image_id)
            if verify:
                config_sha256 = sha256_digest(config_file_loc)
                if image_id != config_sha256:
                    raise Exception(
                        f'Image config {config_file_loc} SHA256:{image_id} is not '
                        f'consistent with actual computed value SHA256: {config_sha256}'
                    )

            layers_archive_locs = [
                os.path.join(extracted_location, lp)
                for lp in manifest_config.get('layers') or []
            ]

            image_config = utils.lower_keys(load_json(config_file_loc))
            images.append(Image.from_config(
                image_format='docker',
                extracted_location=extracted_location,
                archive_location=archive_location,
                image_id=image_id,
                image_config=image_config,
                layers_archive_locs=layers_archive_locs,
                tags=manifest_config.get('repotags') or [],
                verify=verify,
            ))

        return images

    @staticmethod
    def get_oci_images_from_dir(extracted_location, archive_location=None, verify=True):
        """
        Return a list of Images created from an OCI image layout at
        `extracted_location`. The index.json points to manifests blobs which
        point to a config blob and to layer blobs, all stored under
        blobs/sha256/ and named after their sha256.
        """
        index_loc = os.path.join(extracted_location, 'index.json')
        index = utils.lower_keys(load_json(index_loc))
        if index.get('schemaversion') != 2:
            raise Exception(
                f'Unsupported OCI index schema version in {index_loc}. '
                'Only 2 is supported.'
            )

        images = []
        for manifest_data in index.get('manifests') or []:
            mediatype = manifest_data.get('mediaType')
            if mediatype != 'application/vnd.oci.image.manifest.v1+json':
                raise Exception(
                    f'Unsupported OCI index media type {mediatype} in {index_loc}.'
                )
            manifest_loc = get_oci_blob(
                extracted_location, as_bare_id(manifest_data['digest']), verify=verify)
            manifest = load_json(manifest_loc)

            config_sha256 = as_bare_id(manifest['config']['digest'])
            config_loc = get_oci_blob(extracted_location, config_sha256, verify=verify)

            layers_archive_locs = [
                get_oci_blob(extracted_location, as_bare_id(layer['digest']), verify=verify)
                for layer in manifest.get('layers') or []
            ]

            annotations = manifest_data.get('annotations') or {}
            ref_name = annotations.get('org.opencontainers.image.ref.name')

            images.append(Image.from_config(
                image_format='oci',
                extracted_location=extracted_location,
                archive_location=archive_location,
                image_id=config_sha256,
                image_config=utils.lower_keys(load_json(config_loc)),
                layers_archive_locs=layers_archive_locs,
                tags=[ref_name] if ref_name else [],
                verify=verify,
            ))

        return images

    @staticmethod
    def from_config(
        image_format,
        extracted_location,
        image_id,
        image_config,
        layers_archive_locs,
        archive_location=None,
        tags=(),
        verify=True,
    ):
        """
        Return an Image built from a lowercased `image_config` mapping and a
        list of layer tarball locations ordered from bottom to top.

        The `image_config` "rootfs" lists the diff_ids of each layer in order
        from bottom-most to top-most where each id is the sha256 of a layer
        tarball. Its "history" lists entries for all layers including empty
        layers.
        """
        rootfs = image_config.get('rootfs') or {}
        rootfs_type = rootfs.get('type')
        if rootfs_type != 'layers':
            raise Exception(
                f'Unknown type for image rootfs: expecting "layers" and '
                f'not {rootfs_type} in image: {image_id}'
            )

        diff_ids = [as_bare_id(d) for d in rootfs.get('diff_ids') or []]
        if len(diff_ids) != len(layers_archive_locs):
            raise Exception(
                f'Image {image_id}: inconsistent number of layers: '
                f'{len(layers_archive_locs)} archives and {len(diff_ids)} diff_ids'
            )

        layers = []
        for layer_archive_loc, layer_sha256 in zip(layers_archive_locs, diff_ids):
            if verify:
                on_disk_layer_sha256 = utils.uncompressed_sha256_digest(layer_archive_loc)
                if layer_sha256 != on_disk_layer_sha256:
                    raise Exception(
                        f'Layer archive: SHA256:{on_disk_layer_sha256}\n at '
                        f'{layer_archive_loc} does not match \n'
                        f'its "diff_id": SHA256:{layer_sha256}'
                    )

            layers.append(Layer(
                archive_location=layer_archive_loc,
                sha256=layer_sha256,
            ))

        assign_history_to_layers(image_config.get('history') or [], layers)

        return Image(
            image_format=image_format,
            extracted_location=extracted_location,
            archive_location=archive_location,
            image_id=image_id,
            tags=list(tags),
            os=image_config.get('os'),
            architecture=image_config.get('architecture'),
            layers=layers,
        )


def get_oci_blob(extracted_location, sha256, verify=True):
    """
    Return the location of the OCI blob named after `sha256`.
    """
    loc = os.path.join(extracted_location, 'blobs', 'sha256', sha256)
    if not os.path.exists(loc):
        raise Exception(f'Missing OCI image file {loc}')
    if verify:
        on_disk_sha256 = sha256_digest(loc)
        if sha256 != on_disk_sha256:
            raise Exception(
                f'For {loc} on disk SHA256:{on_disk_sha256} does not '
                f'match its expected index SHA256:{sha256}'
            )
    return loc


def assign_history_to_layers(history, layers):
    """
    Given a list of history data mappings and a list of Layer objects, assign
    history-related fields to each Layer if possible.

    `history` is ordered from bottom-most layer to top-most layer, and contains
    also entries for empty layers flagged with "empty_layer". These are skipped
    such that only non-empty entries are aligned with layers.
    """
    if not history:
        return

    non_empty_history = [h for h in history if not h.get('empty_layer', False)]

    if len(non_empty_history) != len(layers):
        if TRACE: logger.debug(
            f'assign_history_to_layers: cannot align {len(non_empty_history)} '
            f'history entries with {len(layers)} layers')
        return

    fields = 'author', 'created', 'created_by', 'comment'

    for hist, layer in zip(non_empty_history, layers):
        hist = utils.lower_keys(hist)
        for field in fields:
            value = hist.get(field)
            if value:
                setattr(layer, field, value)
