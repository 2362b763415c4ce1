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

from commoncode.fileutils import copytree
from commoncode.fileutils import delete

from layer_tracer.utils import normalize_path

TRACE = False
logger = logging.getLogger(__name__)
if TRACE:
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)

"""
Utilities to merge layer archives on top of each other and recreate the
cumulative rootfs of an image after each layer.
"""


WHITEOUT_EXPLICIT_PREFIX = '.wh.'
WHITEOUT_OPAQUE = '.wh..wh..opq'
WHITEOUT_META_PREFIX = '.wh..wh.'


def is_whiteout_marker(path):
    """
    Return True if the ``path`` is a whiteout marker file.

    For example::
    >>> is_whiteout_marker('.wh.somepath')
    True
    >>> is_whiteout_marker('.wh..wh..opq')
    True
    >>> is_whiteout_marker('somepath.wh.')
    False
    >>> is_whiteout_marker('somepath/.wh.foo/')
    True
    """
    file_name = path and os.path.basename(path.strip('/')) or ''
    return file_name.startswith(WHITEOUT_EXPLICIT_PREFIX)


def get_whiteable_path(path):
    """
    Return the whiteable path for ``path`` or None if this not a whiteable path.

    For example::
    >>> get_whiteable_path('usr/lib/.wh.libfoo.so')
    'usr/lib/libfoo.so'
    >>> get_whiteable_path('usr/lib/.wh..wh..opq')
    'usr/lib'
    >>> get_whiteable_path('usr/lib/.wh..wh..plnk')
    >>> get_whiteable_path('usr/lib/libfoo.so')
    >>> get_whiteable_path('usr/lib/.wh...')
    """
    file_name = os.path.basename(path)
    parent_dir = os.path.dirname(path)

    if file_name == WHITEOUT_OPAQUE:
        # the whole content of the parent directory in lower layers is hidden
        # https://github.com/opencontainers/image-spec/blob/main/layer.md#opaque-whiteout
        return parent_dir

    if file_name.startswith(WHITEOUT_META_PREFIX):
        # other ".wh..wh." names are reserved metadata markers
        return

    if file_name.startswith(WHITEOUT_EXPLICIT_PREFIX):
        real_file_name = file_name[len(WHITEOUT_EXPLICIT_PREFIX):]
        if real_file_name in ('', '.', '..'):
            return
        return os.path.join(parent_dir, real_file_name)


def find_whiteouts(root_location, walker=os.walk):
    """
    Yield a two-tuple of:
     - whiteout marker file location
     - corresponding file or directory path relative to the root_location or
       None for markers that do not white out anything

    found under the `root_location` directory.

    `walker` is a callable that behaves the same as `os.walk() and is used
    for testing`
    """
    for top, _dirs, files in walker(root_location):
        for fil in files:
            if not is_whiteout_marker(fil):
                continue
            whiteout_marker_loc = os.path.join(top, fil)
            whiteable_path = get_whiteable_path(
                os.path.relpath(whiteout_marker_loc, root_location))
            yield whiteout_marker_loc, whiteable_path


def get_whiteable_locations(target_dir, whiteable_path):
    """
    Return a list of locations to delete in the `target_dir` directory for a
    `whiteable_path`. The path is normalized such that it never resolves
    outside of `target_dir`. An empty path is the root directory itself, as
    for an opaque whiteout at the top of a layer: its children are returned.
    """
    whiteable_path = normalize_path(whiteable_path)
    if whiteable_path:
        return [os.path.join(target_dir, *whiteable_path.split('/'))]
    if not os.path.isdir(target_dir):
        return []
    return [os.path.join(target_dir, name) for name in sorted(os.listdir(target_dir))]


def apply_layer(layer, target_dir):
    """
    Extract the `layer` Layer and merge it on top of the rootfs in the
    `target_dir` directory applying the OCI whiteouts procedure:
    https://github.com/opencontainers/image-spec/blob/main/layer.md#whiteouts

    Return a list of deleted whiteable locations.

    The merge process consists of these steps:
     - extract the layer in a temp directory
     - find whiteouts in that layer temp dir
     - remove files/directories corresponding to these whiteouts in the target directory
     - remove whiteouts special marker files in the temp directory
     - copy the layer over the target directory, overwriting existing files
    """
    deletions = []

    extracted_loc = tempfile.mkdtemp(prefix='layer_tracer-layer-')
    try:
        layer.extract(extracted_location=extracted_loc)
        if TRACE: logger.debug(f'apply_layer: extracted layer {layer.layer_id} to: {extracted_loc}')

        for whiteout_marker_loc, whiteable_path in find_whiteouts(extracted_loc):
            if whiteable_path is not None:
                for whiteable_loc in get_whiteable_locations(target_dir, whiteable_path):
                    if TRACE: logger.debug(f'apply_layer: deleting whited out: {whiteable_loc}')
                    delete(whiteable_loc)
                    deletions.append(whiteable_loc)
            delete(whiteout_marker_loc)

        copytree(extracted_loc, target_dir)
    finally:
        delete(extracted_loc)
        layer.extracted_location = None

    return deletions
