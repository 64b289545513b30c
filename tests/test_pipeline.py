from __future__ import annotations

from pathlib import Path

import pytest

from conftest import make_config
from GreedyJLF.errors import InputError, InsufficientAtlasesError, ToolNotFoundError, WorkingDirectoryError
from GreedyJLF.pipeline import FusionRunner


def _moving_is(name: str):
    def pred(argv):
        if "-i" not in argv:
            return False
        return Path(argv[argv.index("-i") + 2]).name == f"{name}.nii.gz"

    return pred


def _fusion_lists(fake_tools):
    (call,) = fake_tools.calls_to("label_fusion")
    g = call.index("-g")
    l = call.index("-l")
    return call[g + 1 : l], call[l + 1 : -2]


def test_failed_atlas_is_dropped_and_order_kept(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1", "a2", "a3", "a4"])
    fake_tools.fail_when(_moving_is("a2"))

    output = FusionRunner(cfg).run()

    assert output == tmp_path / "out" / "subj_Labels.nii.gz"
    assert output.exists()
    images, labels = _fusion_lists(fake_tools)
    assert [Path(p).name for p in images] == ["a1_Deformed.nii.gz", "a3_Deformed.nii.gz", "a4_Deformed.nii.gz"]
    assert [Path(p).name for p in labels] == [
        "a1_SegDeformed.nii.gz",
        "a3_SegDeformed.nii.gz",
        "a4_SegDeformed.nii.gz",
    ]


def test_input_matching_an_atlas_is_left_out(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1", "a2", "a3"])
    cfg.input_image = cfg.atlas_dir / "a2.nii.gz"

    FusionRunner(cfg).run()

    images, _ = _fusion_lists(fake_tools)
    assert [Path(p).name for p in images] == ["a1_Deformed.nii.gz", "a3_Deformed.nii.gz"]
    moving = [c[c.index("-i") + 2] for c in fake_tools.calls_to("greedy") if "-i" in c]
    assert str(cfg.atlas_dir / "a2.nii.gz") not in moving
    assert len(moving) == 8


def test_too_few_registered_atlases_aborts_before_fusion(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1", "a2", "a3", "a4"])
    for name in ("a1", "a2", "a3"):
        fake_tools.fail_when(_moving_is(name))

    with pytest.raises(InsufficientAtlasesError):
        FusionRunner(cfg).run()

    assert fake_tools.calls_to("label_fusion") == []
    assert not cfg.output_labels.exists()
    # left behind for postmortem
    assert (tmp_path / "scratch" / "subj_greedyJLF").exists()


def test_working_directory_removed_after_success(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1", "a2"])
    FusionRunner(cfg).run()
    assert not (tmp_path / "scratch" / "subj_greedyJLF").exists()
    fixed = tmp_path / "scratch" / "subj_greedyJLF" / "subj_ImageToLabel.nii.gz"
    (call,) = fake_tools.calls_to("label_fusion")
    assert call[-2] == str(fixed)


def test_working_directory_falls_back_to_output_dir(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1"], tmp_root=None)
    FusionRunner(cfg).run()
    first = fake_tools.calls_to("greedy")[0]
    assert first[first.index("-o") + 1].startswith(str(tmp_path / "out" / "subj_greedyJLF"))
    assert not (tmp_path / "out" / "subj_greedyJLF").exists()


@pytest.mark.parametrize("keep", [True, False])
def test_keep_deformed_atlases(tmp_path: Path, fake_tools, keep: bool) -> None:
    cfg = make_config(tmp_path, ["a1", "a2", "a3"], keep_deformed_atlases=keep)
    fake_tools.fail_when(_moving_is("a3"))

    FusionRunner(cfg).run()

    out = tmp_path / "out"
    for name in ("a1", "a2"):
        assert (out / f"{name}_Deformed.nii.gz").exists() is keep
        assert (out / f"{name}_SegDeformed.nii.gz").exists() is keep
    assert not (out / "a3_Deformed.nii.gz").exists()


def test_missing_tool_fails_before_any_work(tmp_path: Path, fake_tools, monkeypatch) -> None:
    cfg = make_config(tmp_path, ["a1"])
    monkeypatch.setattr("GreedyJLF.tools.shutil.which", lambda name: None if name == "label_fusion" else name)
    with pytest.raises(ToolNotFoundError, match="label_fusion"):
        FusionRunner(cfg).run()
    assert fake_tools.calls == []
    assert not (tmp_path / "out").exists()


def test_zero_atlases_is_fatal(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, [])
    with pytest.raises(InputError, match="No atlases found"):
        FusionRunner(cfg).run()
    assert fake_tools.calls == []


def test_missing_mask_is_fatal(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1"], input_mask=tmp_path / "nomask.nii.gz")
    with pytest.raises(InputError, match="Cannot find mask"):
        FusionRunner(cfg).run()


def test_stale_working_directory_stops_run(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1"])
    (tmp_path / "scratch" / "subj_greedyJLF").mkdir()
    with pytest.raises(WorkingDirectoryError, match="previous failed run"):
        FusionRunner(cfg).run()
    assert fake_tools.calls == []


def test_time_wraps_every_call(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, ["a1"], time_processes=True)
    FusionRunner(cfg).run()
    assert fake_tools.calls
    assert all(c[:2] == ["/opt/bin/time", "-v"] for c in fake_tools.calls)


def test_time_requested_without_time_program_runs_untimed(tmp_path: Path, fake_tools, monkeypatch) -> None:
    cfg = make_config(tmp_path, ["a1"], time_processes=True)
    monkeypatch.setattr("GreedyJLF.tools.shutil.which", lambda name: None if name == "time" else f"/opt/bin/{name}")
    FusionRunner(cfg).run()
    assert all(c[0] in ("greedy", "label_fusion") for c in fake_tools.calls)


def test_subject_copy_failure_is_working_directory_error(tmp_path: Path, fake_tools, monkeypatch) -> None:
    cfg = make_config(tmp_path, ["a1"])

    def _fail(src, dst):
        raise PermissionError(13, "Permission denied", str(dst))

    monkeypatch.setattr("GreedyJLF.pipeline.shutil.copyfile", _fail)
    with pytest.raises(WorkingDirectoryError, match="Cannot copy .*subject.nii.gz"):
        FusionRunner(cfg).run()
    assert fake_tools.calls == []


def test_kept_atlas_copy_failure_is_working_directory_error(tmp_path: Path, fake_tools, monkeypatch) -> None:
    cfg = make_config(tmp_path, ["a1", "a2"], keep_deformed_atlases=True)

    def _full_disk(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("GreedyJLF.pipeline.shutil.copy2", _full_disk)
    with pytest.raises(WorkingDirectoryError, match="a1_Deformed.nii.gz"):
        FusionRunner(cfg).run()
    assert fake_tools.calls_to("label_fusion") == []


def test_manifest_atlases_with_colliding_names_all_reach_fusion(tmp_path: Path, fake_tools) -> None:
    cfg = make_config(tmp_path, [])
    rows = []
    for sub, stem in (("a", "t1"), ("b", "t1"), ("c", "t1_2")):
        d = cfg.atlas_dir / sub
        d.mkdir()
        (d / f"{stem}.nii.gz").write_text(sub, encoding="utf-8")
        (d / "seg.nii.gz").write_text(sub, encoding="utf-8")
        rows.append(f"{sub}/{stem}.nii.gz,{sub}/seg.nii.gz")
    (cfg.atlas_dir / "atlases.csv").write_text("\n".join(rows) + "\n", encoding="utf-8")

    FusionRunner(cfg).run()

    images, labels = _fusion_lists(fake_tools)
    assert len(set(images)) == 3
    assert len(set(labels)) == 3
