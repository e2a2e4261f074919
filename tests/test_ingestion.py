"""Tests for ingestion payload validation."""

import pytest

from vision_engine.errors import ValidationError
from vision_engine.pipeline.ingestion import ValidationLimits, validate_ingestion_payload


class TestValidateIngestionPayload:

    def test_valid_payload(self, payload):
        metadata = validate_ingestion_payload(payload)

        assert metadata.subject_id == "ath42"
        assert metadata.video_ref == payload["secure_url"]
        assert metadata.sport == "baseball"
        assert metadata.session_type == "training"
        assert (metadata.width, metadata.height, metadata.fps) == (1280, 720, 30.0)
        assert metadata.estimated_processing_seconds == 4.0

    def test_subject_from_tag(self, payload):
        del payload["context"]["custom"]["player_id"]
        assert validate_ingestion_payload(payload).subject_id == "ath42"

    def test_defaults(self, payload):
        payload["context"] = {"custom": {"player_id": "ath7"}}
        del payload["frame_rate"]
        metadata = validate_ingestion_payload(payload)

        assert metadata.sport == "baseball"
        assert metadata.session_type == "training"
        assert metadata.fps == 30.0

    def test_url_fallback(self, payload):
        del payload["secure_url"]
        payload["url"] = "http://cdn.example.com/video/upload/ath42.mp4"
        assert validate_ingestion_payload(payload).video_ref == payload["url"]

    def test_collects_every_error(self, payload):
        payload.update(format="mkv", duration=900, width=640, height=480)
        payload["context"]["custom"]["sport"] = "cricket"

        with pytest.raises(ValidationError) as excinfo:
            validate_ingestion_payload(payload)

        errors = excinfo.value.errors
        assert len(errors) == 4
        assert any("Unsupported format: mkv" in e for e in errors)
        assert any("too long" in e for e in errors)
        assert any("Resolution too low: 640x480" in e for e in errors)
        assert any("Unsupported sport: cricket" in e for e in errors)

    def test_missing_subject(self, payload):
        payload["tags"] = ["bullpen", "player_"]
        del payload["context"]

        with pytest.raises(ValidationError) as excinfo:
            validate_ingestion_payload(payload)
        assert excinfo.value.to_dict() == {
            "valid": False,
            "errors": ["Missing subject id (context.custom.player_id or a player_ tag)"],
        }

    @pytest.mark.parametrize("duration", [0, -3, "long", None])
    def test_bad_duration(self, payload, duration):
        payload["duration"] = duration
        with pytest.raises(ValidationError):
            validate_ingestion_payload(payload)

    def test_not_a_video(self, payload):
        payload["resource_type"] = "image"
        with pytest.raises(ValidationError, match="Unsupported resource type"):
            validate_ingestion_payload(payload)

    def test_custom_limits(self, payload):
        limits = ValidationLimits.from_dict({"formats": ["MKV"], "max_duration_seconds": 1, "min_resolution": 480})
        payload.update(format="mkv", width=640, height=480)

        with pytest.raises(ValidationError) as excinfo:
            validate_ingestion_payload(payload, limits)
        assert len(excinfo.value.errors) == 1
        assert "too long" in excinfo.value.errors[0]

    def test_not_a_dict(self):
        with pytest.raises(ValidationError):
            validate_ingestion_payload(["not", "a", "payload"])

    @pytest.mark.parametrize("key", ["duration", "width", "height", "frame_rate"])
    @pytest.mark.parametrize("value", ["nan", float("nan"), "inf", float("-inf")])
    def test_non_finite_numbers(self, payload, key, value):
        payload[key] = value

        with pytest.raises(ValidationError) as excinfo:
            validate_ingestion_payload(payload)
        assert excinfo.value.errors == [f"Invalid {key}: {value!r}"]
