from __future__ import annotations

import pytest

import nitro_files as nf
from io_scene_nitro.core.assemble import assemble


@pytest.fixture
def model_file() -> bytes:
    return nf.bmd0()


@pytest.fixture
def texture_file() -> bytes:
    return nf.btx0()


@pytest.fixture
def textured_model(model_file, texture_file):
    (model,) = assemble([("model.nsbmd", model_file), ("model.nsbtx", texture_file)])
    return model
