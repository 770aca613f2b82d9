"""Tests for the ONNX model manager."""

from __future__ import annotations

import json
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from fishid.config import Settings
from fishid.ml.model_manager import MODEL_REGISTRY, OnnxModelManager, parse_id2label

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(tmp_path: Path, **overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": str(tmp_path),
        "model_ttl": 300,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _write_config(tmp_path: Path, id2label: dict[str, str]) -> Path:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"model_type": "vit", "id2label": id2label}), encoding="utf-8")
    return config_path


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = MODEL_REGISTRY["vit_base_patch16_224"]
        assert spec.name == "vit_base_patch16_224"
        assert spec.repo_id == "Xenova/vit-base-patch16-224"
        assert spec.subfolder == "onnx"

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError):
            MODEL_REGISTRY["nonexistent_model"]

    def test_registry_names_match_keys(self) -> None:
        assert all(name == spec.name for name, spec in MODEL_REGISTRY.items())

    def test_default_model_is_registered(self, tmp_path: Path) -> None:
        assert _make_settings(tmp_path).classification_model in MODEL_REGISTRY


class TestParseId2Label:
    def test_converts_keys_to_int(self) -> None:
        assert parse_id2label({"id2label": {"0": "tench", "1": "goldfish"}}) == {0: "tench", 1: "goldfish"}

    def test_missing_mapping_raises(self) -> None:
        with pytest.raises(ValueError, match="id2label"):
            parse_id2label({"model_type": "vit"})


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "onnx" / "model.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        path = mgr.ensure_downloaded("vit_base_patch16_224")

        mock_download.assert_called_once_with(
            repo_id="Xenova/vit-base-patch16-224",
            filename="model.onnx",
            subfolder="onnx",
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "onnx" / "model.onnx"

    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "model.onnx"
        model_file.touch()

        mgr = OnnxModelManager(_make_settings(tmp_path))
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["vit_base_patch16_224"] = model_file

        path = mgr.ensure_downloaded("vit_base_patch16_224")

        mock_download.assert_not_called()
        assert path == model_file

    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_get_labels_reads_config_once(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(_write_config(tmp_path, {"0": "tench, Tinca tinca", "1": "goldfish"}))
        mgr = OnnxModelManager(_make_settings(tmp_path))

        labels = mgr.get_labels("vit_base_patch16_224")
        again = mgr.get_labels("vit_base_patch16_224")

        assert labels == {0: "tench, Tinca tinca", 1: "goldfish"}
        assert again is labels
        mock_download.assert_called_once_with(
            repo_id="Xenova/vit-base-patch16-224",
            filename="config.json",
            local_dir=str(tmp_path),
        )

    @patch("fishid.ml.model_manager.InferenceSession")
    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "model.onnx")
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session

        mgr = OnnxModelManager(_make_settings(tmp_path))

        session1 = mgr.get_session("vit_base_patch16_224")
        session2 = mgr.get_session("vit_base_patch16_224")

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()

    @patch("fishid.ml.model_manager.InferenceSession")
    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "model.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        assert mgr.get_loaded_models() == []
        mgr.get_session("vit_base_patch16_224")
        assert mgr.get_loaded_models() == ["vit_base_patch16_224"]

    @patch("fishid.ml.model_manager.InferenceSession")
    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_unload_idle_models_removes_expired(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "model.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=1))
        mgr.get_session("vit_base_patch16_224")

        # Fake the last_used time to be in the past.
        mgr._sessions["vit_base_patch16_224"].last_used = time.monotonic() - 10

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    @patch("fishid.ml.model_manager.InferenceSession")
    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_unload_idle_keeps_recent(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "model.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=300))
        mgr.get_session("vit_base_patch16_224")

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == ["vit_base_patch16_224"]

    def test_unload_idle_skipped_when_ttl_zero(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=0))
        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_provider_building_cpu(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cuda"))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="openvino"))
        assert len(mgr._providers) == 2
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    @patch("fishid.ml.model_manager.InferenceSession")
    @patch("fishid.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "model.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))
        mgr.get_session("vit_base_patch16_224")
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    def test_unknown_model_raises_keyerror(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path))
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")
