#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import logging
import os
import tempfile

import attr

from commoncode.fileutils import copytree
from commoncode.fileutils import create_dir
from commoncode.fileutils import delete

from layer_tracer import rootfs
from layer_tracer.fs import DirectoryFS

TRACE = False
logger = logging.getLogger(__name__)
if TRACE:
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)

"""
Chain layers of an image. A chain layer is the cumulative root filesystem
state after squashing all the image layers up to and including a given layer.
"""


class InconsistentLayersError(Exception):
    pass


@attr.attributes(frozen=True)
class ChainLayer(object):
    """
    The cumulative filesystem of an image at a given layer ``index``.
    """

    index = attr.attrib(
        metadata=dict(doc=
            '0-based position of this chain layer, from the bottom (oldest) '
            'layer to the top (newest) layer of the image.'
        )
    )

    fs = attr.attrib(
        repr=False,
        metadata=dict(doc=
            'Read-only filesystem view of the cumulative rootfs at this layer.'
        )
    )

    diff_id = attr.attrib(
        default=None,
        metadata=dict(doc='Digest of the layer that created this chain layer.')
    )

    command = attr.attrib(
        default=None,
        metadata=dict(doc='Command that created the layer of this chain layer.')
    )

    def to_dict(self):
        return dict(
            index=self.index,
            diff_id=self.diff_id,
            command=self.command,
            location=getattr(self.fs, 'root', None),
        )


def build_chain_layers(img, target_dir):
    """
    Return a list of ChainLayer for each layer of the `img` Image ordered
    from the bottom to the top layer.

    The layers are merged one at a time in a work rootfs and, after each
    layer, the merged rootfs is copied in its own `target_dir/<index>`
    directory used as the filesystem of that chain layer.

    Raise an InconsistentLayersError if the image has no layers.
    """
    if not img.layers:
        raise InconsistentLayersError(f'Image {img.image_id} has no layers.')

    create_dir(target_dir)
    work_dir = tempfile.mkdtemp(prefix='layer_tracer-rootfs-')

    chain_layers = []
    try:
        for index, layer in enumerate(img.layers):
            if TRACE: logger.debug(f'build_chain_layers: merging layer {index}: {layer.layer_id}')
            rootfs.apply_layer(layer, work_dir)

            chain_dir = os.path.join(target_dir, str(index))
            create_dir(chain_dir)
            copytree(work_dir, chain_dir)

            chain_layers.append(ChainLayer(
                index=index,
                fs=DirectoryFS(root=chain_dir),
                diff_id=layer.diff_id,
                command=layer.command,
            ))
    finally:
        delete(work_dir)

    return chain_layers
