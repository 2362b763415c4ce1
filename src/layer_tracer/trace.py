#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple

import attr

from layer_tracer.extraction import ExtractionConfig
from layer_tracer.extraction import ExtractionError
from layer_tracer.extraction import run_extraction
from layer_tracer.identity import IdentityError
from layer_tracer.identity import find_identity_keys
from layer_tracer.identity import get_identity_key
from layer_tracer.inventory import LayerDetails
from layer_tracer.inventory import is_filesystem_extractor

TRACE = False
logger = logging.getLogger(__name__)
if TRACE:
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)

"""
Trace the origin layer of inventory items found in the top layer of a
container image.

The origin of a package is found by looking at each consecutive pair of
chain layers (n, n+1) backward from the top and checking if the package is
present in the chain layer n+1 but not in the chain layer n. For example,
with these chain layers, each with a different set of packages:

    Chain layer 0: packages A, B
    Chain layer 1: packages A
    Chain layer 2: packages A, B, C

The origin of package C is layer 2, because it is not in layer 1. Package B
is also attributed to layer 2 even though it is present in layer 0: it was
deleted in layer 1 and added back in layer 2, which is the layer responsible
for its presence in the image. Package A is in all layers and is attributed
to layer 0.

The chain layers must be ordered from the oldest to the newest: this is not
checked and the results are wrong otherwise.
"""

# Policies for the origin of items that cannot be traced: items without
# locations or reported by an extractor that cannot run on a filesystem.
UNTRACEABLE_LAST = 'last'
UNTRACEABLE_FIRST = 'first'
UNTRACEABLE_UNKNOWN = 'unknown'

UNTRACEABLE_POLICIES = (
    UNTRACEABLE_LAST,
    UNTRACEABLE_FIRST,
    UNTRACEABLE_UNKNOWN,
)


@attr.attributes
class ResolutionResult(object):
    """
    The result of resolving the origin layers of an inventory.
    """

    origins = attr.attrib(
        default=attr.Factory(dict),
        metadata=dict(doc='Mapping of {PackageIdentityKey: LayerDetails}.')
    )

    canceled = attr.attrib(
        default=False,
        metadata=dict(doc=
            'True if the resolution was canceled. The origins are then '
            'partial.'
        )
    )

    untraceable = attr.attrib(
        default=attr.Factory(list),
        metadata=dict(doc=
            'List of InventoryItem that could not be traced either because '
            'they have no identity, no locations or no filesystem extractor.'
        )
    )

    def get(self, item):
        """
        Return the LayerDetails of the `item` InventoryItem or None if unknown.
        """
        try:
            return self.origins.get(get_identity_key(item))
        except IdentityError:
            return None


class TraceOutcome(NamedTuple):
    key: object
    item: object
    # LayerDetails or None if the origin is unknown
    origin: object
    traceable: bool
    canceled: bool


def is_canceled(cancel_event):
    return cancel_event is not None and cancel_event.is_set()


def is_traceable(item):
    """
    Return True if the `item` InventoryItem can be traced in older layers.
    """
    return bool(item.locations) and is_filesystem_extractor(item.extractor)


def get_layer_details(chain_layers):
    """
    Return a list of LayerDetails, one for each of the `chain_layers`.
    """
    return [
        LayerDetails(
            index=index,
            diff_id=chain_layer.diff_id,
            command=chain_layer.command,
            in_base_image=False,
        )
        for index, chain_layer in enumerate(chain_layers)
    ]


def trace_item(
    key,
    item,
    chain_layers,
    layer_details,
    cancel_event=None,
    untraceable_policy=UNTRACEABLE_LAST,
):
    """
    Return a TraceOutcome for the `item` InventoryItem with a `key`
    PackageIdentityKey by walking backward through the `chain_layers` list of
    ChainLayer and their corresponding `layer_details` list of LayerDetails.
    """
    if is_canceled(cancel_event):
        return TraceOutcome(key, item, None, traceable=True, canceled=True)

    # introduced in the newest layer unless found in older layers
    origin = layer_details[-1]

    if not is_traceable(item):
        if untraceable_policy == UNTRACEABLE_FIRST:
            origin = layer_details[0]
        elif untraceable_policy == UNTRACEABLE_UNKNOWN:
            origin = None
        return TraceOutcome(key, item, origin, traceable=False, canceled=False)

    for index in range(len(chain_layers) - 2, -1, -1):
        if is_canceled(cancel_event):
            return TraceOutcome(key, item, None, traceable=True, canceled=True)

        config = ExtractionConfig.for_probe(
            extractor=item.extractor,
            paths=item.locations,
            fs=chain_layers[index].fs,
        )
        try:
            old_items, _stats = run_extraction(config)
        except ExtractionError as e:
            # we cannot look further back
            if TRACE: logger.debug(f'trace_item: {key!r}: stopping at layer {index}: {e}')
            return TraceOutcome(key, item, origin, traceable=True, canceled=False)

        if key not in find_identity_keys(old_items):
            return TraceOutcome(key, item, layer_details[index + 1], traceable=True, canceled=False)

    # present in every layer
    return TraceOutcome(key, item, layer_details[0], traceable=True, canceled=False)


def resolve_origin_layers(
    inventory,
    chain_layers,
    cancel_event=None,
    max_workers=1,
    untraceable_policy=UNTRACEABLE_LAST,
):
    """
    Return a ResolutionResult with the mapping of {PackageIdentityKey:
    LayerDetails} for the origin layer of each `inventory` InventoryItem found
    in the top layer of the `chain_layers` list of ChainLayer ordered from the
    oldest to the newest.

    Items without an identity key are skipped. Items that cannot be traced get
    an origin based on the `untraceable_policy`.

    `cancel_event` is an optional object with an ``is_set()`` method such as a
    threading.Event. It is checked before each item and each layer: when set,
    the resolution stops and the result is marked as canceled with the
    origins resolved so far.

    Items are resolved in a pool of `max_workers` threads if more than one.
    """
    if untraceable_policy not in UNTRACEABLE_POLICIES:
        raise ValueError(
            f'Unknown untraceable_policy: {untraceable_policy!r}. '
            f'Must be one of: {", ".join(UNTRACEABLE_POLICIES)}'
        )

    result = ResolutionResult()
    if not chain_layers:
        return result

    layer_details = get_layer_details(chain_layers)

    keyed_items = []
    for item in inventory:
        try:
            keyed_items.append((get_identity_key(item), item))
        except IdentityError as e:
            if TRACE: logger.debug(f'resolve_origin_layers: skipping: {e}')
            result.untraceable.append(item)

    def _trace(key_and_item):
        key, item = key_and_item
        return trace_item(
            key=key,
            item=item,
            chain_layers=chain_layers,
            layer_details=layer_details,
            cancel_event=cancel_event,
            untraceable_policy=untraceable_policy,
        )

    if max_workers and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            # results come back in the input order
            outcomes = list(executor.map(_trace, keyed_items))
    else:
        outcomes = []
        for key_and_item in keyed_items:
            outcome = _trace(key_and_item)
            outcomes.append(outcome)
            if outcome.canceled:
                break

    for outcome in outcomes:
        if outcome.canceled:
            result.canceled = True
            continue

        if not outcome.traceable:
            result.untraceable.append(outcome.item)

        if outcome.origin is None:
            result.origins.pop(outcome.key, None)
        else:
            result.origins[outcome.key] = outcome.origin

    if TRACE: logger.debug(
        f'resolve_origin_layers: {len(result.origins)} origins, '
        f'canceled: {result.canceled}')

    return result


def populate_layer_details(inventory, origins):
    """
    Return a new list of InventoryItem copied from the `inventory` list with
    their ``layer_details`` set from the `origins` mapping of
    {PackageIdentityKey: LayerDetails}. Items without an origin keep their
    existing ``layer_details``. The `inventory` items are not modified.
    """
    enriched = []
    for item in inventory:
        layer_details = item.layer_details
        try:
            layer_details = origins.get(get_identity_key(item), layer_details)
        except IdentityError:
            pass
        enriched.append(attr.evolve(item, layer_details=layer_details))
    return enriched


def trace_inventory(inventory, chain_layers, **kwargs):
    """
    Return a tuple of (list of InventoryItem with layer details, ResolutionResult)
    for an `inventory` list of InventoryItem and a `chain_layers` list of
    ChainLayer. Extra `kwargs` are passed to resolve_origin_layers().
    """
    result = resolve_origin_layers(inventory, chain_layers, **kwargs)
    return populate_layer_details(inventory, result.origins), result
