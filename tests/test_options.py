from __future__ import annotations

import json

import pytest

from io_scene_nitro.convert.options import ExportOptions, export_options_from_json
from io_scene_nitro.core.assemble import AssembleOptions, assemble_options_from_json


def test_export_options_json():
    opts = ExportOptions(embed_images=False, up_axis="Z_UP", frame_rate=30.0, image_dir="tex/")
    s = opts.to_json()
    assert json.loads(s)["v"] == 1
    assert export_options_from_json(s) == opts
    assert export_options_from_json("{}") == ExportOptions()


def test_export_options_normalizes_axis():
    assert export_options_from_json('{"up_axis": " z_up "}').up_axis == "Z_UP"


@pytest.mark.parametrize(
    "doc",
    [
        "[]",
        '{"v": 2}',
        '{"binary": "yes"}',
        '{"frame_rate": "fast"}',
        '{"frame_rate": 0}',
        '{"up_axis": "W_UP"}',
    ],
)
def test_export_options_rejects(doc):
    with pytest.raises(ValueError):
        export_options_from_json(doc)


def test_assemble_options_json():
    opts = AssembleOptions(loop_animations=False, all_animations=True)
    assert assemble_options_from_json(opts.to_json()) == opts
    assert assemble_options_from_json("{}") == AssembleOptions()


@pytest.mark.parametrize("doc", ["1", '{"v": 3}', '{"loop_animations": 1}'])
def test_assemble_options_rejects(doc):
    with pytest.raises(ValueError):
        assemble_options_from_json(doc)
