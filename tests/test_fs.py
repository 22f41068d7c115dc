"""Test atomic filesystem operations.

Tests for src.utils.fs:
    - Atomic writes leave no temporary file behind
    - YAML roundtrip preserves structure and key order
    - ensure_dir creates parents
    - load_yaml error handling

Run:
    pytest tests/test_fs.py -v
"""

import pytest
import yaml

from src.utils import fs


def test_ensure_dir(tmp_path):
    target = tmp_path / "a" / "b" / "c"
    assert fs.ensure_dir(target) == target
    assert target.is_dir()
    # Idempotent
    fs.ensure_dir(target)


def test_atomic_write_bytes(tmp_path):
    path = tmp_path / "nested" / "blob.bin"
    fs.atomic_write_bytes(path, b"\x00\x01\x02")
    assert path.read_bytes() == b"\x00\x01\x02"
    assert not (tmp_path / "nested" / "blob.bin.tmp").exists()


def test_atomic_write_overwrites(tmp_path):
    path = tmp_path / "note.txt"
    fs.atomic_write_text(path, "first")
    fs.atomic_write_text(path, "second")
    assert path.read_text() == "second"


def test_atomic_write_failure_cleans_up(tmp_path):
    path = tmp_path / "dir_in_the_way"
    path.mkdir()
    with pytest.raises(RuntimeError, match="atomically"):
        fs.atomic_write_bytes(path, b"data")
    assert not (tmp_path / "dir_in_the_way.tmp").exists()


def test_yaml_roundtrip_preserves_order(tmp_path):
    data = {"trackers": [{"tracker_id": 1, "pose": {"position": [1.0, 2.0, 3.0]}}], "alpha": 1}
    path = tmp_path / "poses.yaml"
    fs.atomic_yaml_dump(data, path)
    assert fs.load_yaml(path) == data
    assert path.read_text().splitlines()[0] == "trackers:"


def test_load_yaml_empty_returns_none(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert fs.load_yaml(path) is None


def test_load_yaml_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        fs.load_yaml(tmp_path / "missing.yaml")


def test_load_yaml_invalid(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("key: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        fs.load_yaml(path)
