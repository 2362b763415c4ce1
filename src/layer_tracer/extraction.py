#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import logging

import attr

from layer_tracer.inventory import is_filesystem_extractor
from layer_tracer.utils import normalize_path

TRACE = False
logger = logging.getLogger(__name__)
if TRACE:
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)

"""
Run filesystem extractors on a filesystem view, either on every file or only
on an explicit list of files.
"""


class ExtractionError(Exception):
    pass


@attr.attributes(frozen=True)
class ExtractionConfig(object):
    """
    What to extract and where for a single extraction run. A new config is
    built for each run and is never modified.
    """

    extractors = attr.attrib(
        converter=tuple,
        metadata=dict(doc='Tuple of extractors to run.')
    )

    files_to_extract = attr.attrib(
        converter=tuple,
        metadata=dict(doc=
            'Tuple of rootfs-relative file paths to extract. '
            'No other file is looked at.'
        )
    )

    fs = attr.attrib(
        repr=False,
        metadata=dict(doc='Read-only filesystem view to extract from.')
    )

    @classmethod
    def for_probe(cls, extractor, paths, fs):
        """
        Return a config to run only `extractor` on the files at `paths` in the
        `fs` filesystem view.
        """
        return cls(extractors=[extractor], files_to_extract=paths, fs=fs)


@attr.attributes
class ExtractionStats(object):
    """
    Counters for one extraction run.
    """
    files_requested = attr.attrib(default=0)
    files_missing = attr.attrib(default=0)
    files_extracted = attr.attrib(default=0)
    items_found = attr.attrib(default=0)
    errors = attr.attrib(
        default=attr.Factory(list),
        metadata=dict(doc='List of (path, error message) tuples.')
    )


def _extract_file(extractor, fs, path):
    """
    Return a list of InventoryItem extracted by `extractor` from `path`.
    Raise an ExtractionError on errors.
    """
    try:
        items = list(extractor.extract(fs, path) or [])
    except Exception as e:
        raise ExtractionError(f'{extractor.name}: failed to extract: {path}: {e!r}') from e

    for item in items:
        if item.extractor is None:
            item.extractor = extractor
    return items


def run_extraction(config):
    """
    Return a tuple of (list of InventoryItem, ExtractionStats) found by running
    the `config` ExtractionConfig extractors only on its ``files_to_extract``.

    Files that do not exist in the config filesystem are skipped. Raise an
    ExtractionError if any extractor fails: the extraction is aborted.
    """
    extractors = [e for e in config.extractors if is_filesystem_extractor(e)]
    stats = ExtractionStats()
    items = []

    for path in config.files_to_extract:
        path = normalize_path(path)
        stats.files_requested += 1
        try:
            is_file = config.fs.is_file(path)
        except OSError as e:
            raise ExtractionError(f'Cannot access: {path}: {e!r}') from e

        if not is_file:
            stats.files_missing += 1
            continue

        for extractor in extractors:
            if not extractor.file_required(path):
                continue
            items.extend(_extract_file(extractor, config.fs, path))
            stats.files_extracted += 1

    stats.items_found = len(items)
    if TRACE: logger.debug(f'run_extraction: {config!r}: {stats!r}')
    return items, stats


def scan_filesystem(fs, extractors):
    """
    Return a tuple of (list of InventoryItem, ExtractionStats) found by running
    each filesystem extractor of the `extractors` list on every file it
    requires in the `fs` filesystem view.

    Extraction errors are logged and collected in the stats ``errors``: a
    file that fails to extract does not stop the scan.
    """
    extractors = [e for e in extractors if is_filesystem_extractor(e)]
    stats = ExtractionStats()
    items = []

    for path in fs.walk():
        for extractor in extractors:
            if not extractor.file_required(path):
                continue
            stats.files_requested += 1
            try:
                found = _extract_file(extractor, fs, path)
            except ExtractionError as e:
                logger.warning(str(e))
                stats.errors.append((path, str(e)))
                continue
            stats.files_extracted += 1
            items.extend(found)

    stats.items_found = len(items)
    if TRACE: logger.debug(f'scan_filesystem: {fs!r}: {stats!r}')
    return items, stats
