#
# Copyright (c) nexB Inc. and others. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
# See http://www.apache.org/licenses/LICENSE-2.0 for the license text.
# See https://github.com/nexB/container-inspector for support or download.
# See https://aboutcode.org for more information about nexB OSS projects.
#

import csv as csv_module
import json as json_module
import logging
import os
import sys
import tempfile
from io import StringIO

import click

from commoncode.fileutils import delete

from layer_tracer import chain
from layer_tracer import extraction
from layer_tracer import trace
from layer_tracer.extractors import get_default_extractors
from layer_tracer.image import Image

TRACE = False
logger = logging.getLogger(__name__)
if TRACE:
    logging.basicConfig(level=logging.DEBUG, stream=sys.stdout)
    logger.setLevel(logging.DEBUG)


@click.command()
@click.argument('image_path', metavar='IMAGE_PATH', type=click.Path(exists=True, readable=True))
@click.argument('target_dir', metavar='TARGET_DIR', type=click.Path(exists=True, writable=True))
@click.help_option('-h', '--help')
def layer_tracer_chain(image_path, target_dir):
    """
    Given a container image at IMAGE_PATH, build the cumulative root
    filesystem of each of its layers in TARGET_DIR. Print the chain layers as
    JSON.
    """
    click.echo(_layer_tracer_chain(image_path, target_dir))


def _layer_tracer_chain(image_path, target_dir):
    images = get_images_from_dir_or_tarball(image_path)
    target_dir = os.path.abspath(os.path.expanduser(target_dir))

    results = []
    for img in images:
        image_target_dir = os.path.join(target_dir, img.image_id)
        chain_layers = chain.build_chain_layers(img, image_target_dir)
        results.append(dict(
            image_id=img.image_id,
            tags=img.tags,
            chain_layers=[cl.to_dict() for cl in chain_layers],
        ))
    return json_module.dumps(results, indent=2)


@click.command()
@click.argument('image_path', metavar='IMAGE_PATH', type=click.Path(exists=True, readable=True))
@click.option('--extract-to', default=None, metavar='PATH', type=click.Path(exists=True, readable=True),
    help='Extract an image tarball in this directory.')
@click.option('--csv', is_flag=True, default=False, help='Print information as CSV instead of JSON.')
@click.option('--workers', default=1, type=click.IntRange(min=1), show_default=True,
    help='Number of threads used to trace packages.')
@click.option('--untraceable', default=trace.UNTRACEABLE_LAST, show_default=True,
    type=click.Choice(trace.UNTRACEABLE_POLICIES),
    help='Origin layer of packages that cannot be traced: the last or first '
         'layer, or unknown.')
@click.help_option('-h', '--help')
def layer_tracer(image_path, extract_to=None, csv=False, workers=1, untraceable=trace.UNTRACEABLE_LAST):
    """
    Find the installed packages of the container image at IMAGE_PATH and the
    layer that introduced each of them.
    Print information as JSON by default or as CSV with --csv.
    Output is printed to stdout. Use a ">" redirect to save in a file.
    """
    results = _layer_tracer(
        image_path,
        extract_to=extract_to,
        csv=csv,
        workers=workers,
        untraceable_policy=untraceable,
    )
    click.echo(results)


def _layer_tracer(
    image_path,
    extract_to=None,
    csv=False,
    workers=1,
    untraceable_policy=trace.UNTRACEABLE_LAST,
    extractors=None,
):
    images = get_images_from_dir_or_tarball(image_path, extract_to=extract_to)
    extractors = extractors or get_default_extractors()

    traced = [
        trace_image(
            img,
            extractors=extractors,
            workers=workers,
            untraceable_policy=untraceable_policy,
        )
        for img in images
    ]

    if not csv:
        return json_module.dumps(traced, indent=2)

    flat = list(flatten_traced_images(traced))
    if not flat:
        return
    output = StringIO()
    w = csv_module.DictWriter(output, flat[0].keys())
    w.writeheader()
    for f in flat:
        w.writerow(f)
    val = output.getvalue()
    output.close()
    return val


def trace_image(img, extractors, workers=1, untraceable_policy=trace.UNTRACEABLE_LAST):
    """
    Return a mapping of data for the `img` Image with the list of packages
    found in its top layer by the `extractors`, each with its origin layer.
    """
    chain_dir = tempfile.mkdtemp(prefix='layer_tracer-chain-')
    try:
        chain_layers = chain.build_chain_layers(img, chain_dir)
        top_layer = chain_layers[-1]
        inventory, stats = extraction.scan_filesystem(top_layer.fs, extractors)
        if TRACE: logger.debug(f'trace_image: {img.image_id}: {stats!r}')

        items, _result = trace.trace_inventory(
            inventory,
            chain_layers,
            max_workers=workers,
            untraceable_policy=untraceable_policy,
        )
    finally:
        delete(chain_dir)

    return dict(
        image_id=img.image_id,
        tags=img.tags,
        layers=[
            dict(index=i, diff_id=layer.diff_id, command=layer.command)
            for i, layer in enumerate(img.layers)
        ],
        packages=[item.to_dict() for item in items],
        errors=[dict(path=path, message=message) for path, message in stats.errors],
    )


def flatten_traced_images(traced_images):
    """
    Yield a flat mapping for each package of each traced image mapping.
    This is a flat data structure for CSV and tabular output.
    """
    for img in traced_images:
        for package in img['packages']:
            layer_details = package.get('layer_details') or {}
            yield dict(
                image_id=img['image_id'],
                name=package['name'],
                version=package['version'],
                purl=package['purl'],
                locations=','.join(package['locations']),
                layer_index=layer_details.get('index'),
                layer_diff_id=layer_details.get('diff_id'),
                layer_command=layer_details.get('command'),
            )


def get_images_from_dir_or_tarball(image_path, extract_to=None):
    image_loc = os.path.abspath(os.path.expanduser(image_path))
    if os.path.isdir(image_loc):
        images = Image.get_images_from_dir(image_loc)
    else:
        # assume tarball
        extract_to = extract_to or tempfile.mkdtemp(prefix='layer_tracer-image-')
        images = Image.get_images_from_tarball(
            archive_location=image_loc,
            extracted_location=extract_to,
            verify=True,
        )
    return images
