#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import attr

from layer_tracer.utils import normalize_path


class IdentityError(Exception):
    pass


def normalize_locations(locations):
    """
    Return a sorted tuple of normalized paths from a `locations` sequence of
    paths.

    For example::
    >>> normalize_locations(['/usr/lib/b', 'usr/./lib/a'])
    ('usr/lib/a', 'usr/lib/b')
    """
    return tuple(sorted(normalize_path(loc) for loc in locations or ()))


@attr.attributes(frozen=True, order=True)
class PackageIdentityKey(object):
    """
    Identify a package instance: the same package found at the same
    locations. Two InventoryItem observed in two different filesystems are
    the same package instance if their keys are equal.
    """

    purl = attr.attrib(
        metadata=dict(doc='Package URL string of the package.')
    )

    locations = attr.attrib(
        converter=normalize_locations,
        metadata=dict(doc='Sorted tuple of normalized package file paths.')
    )


def get_identity_key(item):
    """
    Return a PackageIdentityKey for the `item` InventoryItem.
    Raise an IdentityError if a key cannot be computed.
    """
    extractor = getattr(item, 'extractor', None)
    if extractor is None:
        raise IdentityError(f'No extractor to compute the identity of: {item!r}')

    try:
        purl = extractor.to_purl(item)
    except Exception as e:
        raise IdentityError(
            f'{extractor.name}: cannot compute the package URL of: {item!r}') from e

    if not purl:
        raise IdentityError(f'{extractor.name}: empty package URL for: {item!r}')

    return PackageIdentityKey(purl=str(purl), locations=item.locations)


def find_identity_keys(items):
    """
    Return a set of PackageIdentityKey for an `items` list of InventoryItem,
    ignoring items without an identity.
    """
    keys = set()
    for item in items:
        try:
            keys.add(get_identity_key(item))
        except IdentityError:
            continue
    return keys
