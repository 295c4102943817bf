"""Unit tests for request pipeline assembly."""

import base64
import gzip
import logging

import pytest

from dotserve.bootstrap.config import ServeConfig
from dotserve.pipeline.composer import build_pipeline, describe_pipeline


def make_config(tmp_path, **overrides) -> ServeConfig:
    values = {
        "directory": str(tmp_path),
        "host": "127.0.0.1",
        "port": 0,
        "username": "admin",
        "secret": "hunter2",
    }
    values.update(overrides)
    return ServeConfig(**values)


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({}, ["logging", "compression", "authentication", "recording"]),
        ({"secret": None}, ["logging", "compression", "recording"]),
        (
            {"disable_gzip": True, "disable_brotli": True},
            ["logging", "authentication", "recording"],
        ),
        ({"disable_gzip": True}, ["logging", "compression", "authentication", "recording"]),
        ({"disable_logging": True}, ["compression", "authentication", "recording"]),
        (
            {
                "secret": None,
                "disable_logging": True,
                "disable_gzip": True,
                "disable_brotli": True,
            },
            ["recording"],
        ),
    ],
)
def test_layers_follow_configuration(tmp_path, recording_handler, overrides, expected):
    pipeline = build_pipeline(make_config(tmp_path, **overrides), recording_handler)
    assert describe_pipeline(pipeline) == expected


def test_pipeline_logs_its_layers(tmp_path, recording_handler, caplog):
    caplog.set_level(logging.INFO, logger="dotserve")
    build_pipeline(make_config(tmp_path, secret=None), recording_handler)
    record = next(
        r for r in caplog.records if getattr(r, "event", None) == "pipeline_built"
    )
    assert record.layers == ["logging", "compression", "recording"]


def test_unauthorized_attempts_are_logged_and_compressed(
    tmp_path, recording_handler, make_request, caplog
):
    caplog.set_level(logging.INFO, logger="dotserve")
    pipeline = build_pipeline(make_config(tmp_path), recording_handler)

    response = pipeline(make_request(headers={"Accept-Encoding": "gzip"}))

    assert response.status_code == 401
    assert response.headers["Content-Encoding"] == "gzip"
    assert gzip.decompress(b"".join(response.body_iter)) == b"Unauthorized\n"
    assert not recording_handler.calls
    assert any(
        getattr(r, "event", None) == "request_received" for r in caplog.records
    )


def test_authorized_request_passes_every_layer(
    tmp_path, recording_handler, make_request
):
    pipeline = build_pipeline(make_config(tmp_path), recording_handler)
    token = base64.b64encode(b"admin:hunter2").decode()

    response = pipeline(make_request(headers={"Authorization": f"Basic {token}"}))

    assert response.status_code == 200
    assert len(recording_handler.calls) == 1
