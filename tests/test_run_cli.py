import json

import pytest

from masonrygrid import run_cli
from masonrygrid.utils import settings as settings_module


@pytest.fixture(autouse=True)
def default_settings(monkeypatch):
    monkeypatch.setattr(settings_module.settings, "value",
                        lambda key, defaultValue=None, type=None: defaultValue)
    monkeypatch.setattr(run_cli, "suppress_warnings", lambda: None)


def write_items(tmp_path, items):
    path = tmp_path / "items.json"
    path.write_text(json.dumps(items), encoding="utf-8")
    return path


def sample_items():
    return [
        {"id": 1, "width": 400, "height": 300, "title": "Morning"},
        {"id": 2, "width": 1920, "height": 1080},
        {"id": 3, "width": 300, "height": 400},
        {"id": 4, "width": 800, "height": 800},
        {"id": 5, "width": 2400, "height": 1000},
    ]


def test_order_command(tmp_path, capsys):
    path = write_items(tmp_path, sample_items())

    assert run_cli.main(["order", str(path)]) == 0

    output = json.loads(capsys.readouterr().out)
    assert set(output["orders"]) == {"2col", "4col"}
    assert sorted(output["orders"]["2col"]["orderedIds"]) == [1, 2, 3, 4, 5]
    assert output["wideItemCount"] == 2


def test_order_command_custom_profiles(tmp_path, capsys):
    path = write_items(tmp_path, {"items": sample_items()})

    assert run_cli.main(["order", str(path), "--profiles", "3"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert set(output["orders"]) == {"3col"}


def test_layout_command(tmp_path, capsys):
    path = write_items(tmp_path, sample_items())

    assert run_cli.main(["layout", str(path), "--width", "1280"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["columnCount"] == 4
    assert output["orderingSource"] == "4col"
    assert output["isLayoutReady"] is True
    assert len(output["items"]) == 5


def test_layout_command_column_override(tmp_path, capsys):
    path = write_items(tmp_path, sample_items())

    assert run_cli.main(["layout", str(path), "--width", "1280",
                         "--columns", "2"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["columnCount"] == 2
    assert output["orderingSource"] == "2col"


def test_layout_command_uses_breakpoint_gap(tmp_path, capsys):
    path = write_items(tmp_path, sample_items())

    assert run_cli.main(["layout", str(path), "--width", "375"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["columnCount"] == 2
    assert output["gap"] == 12
    # 375 - 2 * 8 padding, less one gap, over two columns
    assert output["columnWidth"] == 173


def test_invalid_items_exit_with_error(tmp_path, capsys):
    path = write_items(tmp_path, [{"id": 1, "width": 10, "height": 10},
                                  {"id": 1, "width": 20, "height": 10}])

    assert run_cli.main(["order", str(path)]) == 1
    assert "Invalid items" in capsys.readouterr().err


def test_resolve_command_uses_local_files(tmp_path, capsys):
    from PIL import Image as pilimage

    image_path = tmp_path / "a.png"
    pilimage.new("RGB", (64, 48)).save(image_path)

    assert run_cli.main(["resolve", str(image_path)]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output[str(image_path)] == {"width": 64, "height": 48,
                                       "source": "probe"}
