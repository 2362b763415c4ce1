#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import attr

from layer_tracer.utils import ToDictMixin

"""
Inventory items reported by extractors and the extractor plugin contracts.
"""

# kinds of extractors
FILESYSTEM = 'filesystem'
STANDALONE = 'standalone'


@attr.attributes(frozen=True)
class LayerDetails(ToDictMixin):
    """
    The chain layer where an inventory item was introduced.
    """

    index = attr.attrib(
        metadata=dict(doc='Index of the chain layer.')
    )

    diff_id = attr.attrib(
        default=None,
        metadata=dict(doc='Digest of the layer.')
    )

    command = attr.attrib(
        default=None,
        metadata=dict(doc='Command that created the layer.')
    )

    in_base_image = attr.attrib(
        default=False,
        metadata=dict(doc=
            'True if the layer belongs to the base image. '
            'Not computed here: always False.'
        )
    )


@attr.attributes
class InventoryItem(ToDictMixin):
    """
    A software package instance found in a filesystem.
    """

    name = attr.attrib(
        default=None,
        metadata=dict(doc='Package name.')
    )

    version = attr.attrib(
        default=None,
        metadata=dict(doc='Package version.')
    )

    locations = attr.attrib(
        default=attr.Factory(list),
        metadata=dict(doc=
            'List of rootfs-relative paths of the files where this package '
            'was found.'
        )
    )

    extractor = attr.attrib(
        default=None,
        repr=False,
        eq=False,
        metadata=dict(doc='Extractor that reported this package.')
    )

    metadata = attr.attrib(
        default=attr.Factory(dict),
        metadata=dict(doc='Extractor-specific data for this package.')
    )

    layer_details = attr.attrib(
        default=None,
        metadata=dict(doc='LayerDetails of the layer that introduced this package.')
    )

    @property
    def purl(self):
        """
        Return the package URL string for this item or None.
        """
        if self.extractor is not None:
            return self.extractor.to_purl(self)

    def to_dict(self, exclude_fields=('extractor',)):
        data = super().to_dict(exclude_fields=exclude_fields)
        data['extractor'] = self.extractor and self.extractor.name or None
        try:
            data['purl'] = self.purl
        except Exception:
            data['purl'] = None
        return data


class Extractor(object):
    """
    Base class for extractor plugins that report InventoryItem.
    Subclasses set a ``name``, a ``version`` and a ``kind`` and compute the
    package URL of the items they report.
    """
    name = None
    version = 0
    kind = STANDALONE

    def to_purl(self, item):
        """
        Return a package URL string that identifies the `item` InventoryItem.
        """
        raise NotImplementedError

    def __repr__(self):
        return f'{self.__class__.__name__}(name={self.name!r}, version={self.version!r})'


class FilesystemExtractor(Extractor):
    """
    Base class for extractors that report inventory items from files of a
    filesystem view. These must not keep any state between calls: they are
    called again on the filesystems of older chain layers.
    """
    kind = FILESYSTEM

    def file_required(self, path):
        """
        Return True if the file at the rootfs-relative `path` should be
        extracted by this extractor.
        """
        raise NotImplementedError

    def extract(self, fs, path):
        """
        Return a list of InventoryItem found in the file at `path` of the `fs`
        filesystem view. Raise an Exception on errors.
        """
        raise NotImplementedError


def is_filesystem_extractor(extractor):
    """
    Return True if `extractor` can extract inventory from a filesystem.
    """
    return getattr(extractor, 'kind', None) == FILESYSTEM
