"""
Unit tests for error normalization and fingerprinting.
"""

import pytest

from error_tracking.services.fingerprint import (
    compute_fingerprint,
    extract_frames,
    fnv1a_128,
    hash_key,
    legacy_hash,
    normalize_for_fingerprint,
)


JS_STACK = (
    "TypeError: x is undefined\n"
    "    at handleClick (webpack:///src/components/Button.tsx:12:5)\n"
    "    at onClick (webpack:///src/App.tsx:3:1)\n"
    "    at HTMLButtonElement.dispatch (/static/js/react-dom.js:10:2)\n"
    "    at invoke (/static/js/react-dom.js:11:2)"
)

PY_STACK = (
    "Traceback (most recent call last):\n"
    '  File "/srv/app/views.py", line 42, in handler\n'
    "    return service.run()\n"
    '  File "/srv/app/service.py", line 7, in run\n'
    "    raise ValueError('bad')\n"
    "ValueError: bad"
)


class TestNormalization:
    """Test masking of volatile message parts."""

    def test_masks_uuid_and_numbers(self):
        message = "User 550E8400-e29b-41d4-a716-446655440000 failed after 3 retries"

        assert normalize_for_fingerprint(message) == "user {{uuid}} failed after {{n}} retries"

    def test_masks_long_quoted_strings(self):
        long_literal = '"' + "x" * 50 + '"'
        short_literal = '"' + "y" * 49 + '"'

        normalized = normalize_for_fingerprint(f"Bad payload {long_literal} near {short_literal}")

        assert normalized == f'bad payload "{{{{str}}}}" near {short_literal}'

    def test_numbers_inside_words_are_kept(self):
        assert normalize_for_fingerprint("v2 item_42 failed") == "v2 item_42 failed"

    def test_only_ascii_digits_are_numbers(self):
        assert normalize_for_fingerprint("Order ١٢٣ failed") == "order ١٢٣ failed"
        assert normalize_for_fingerprint("Fehler in Straße7") == "fehler in straße{{n}}"

    def test_lowercases_and_trims(self):
        assert normalize_for_fingerprint("  Network Error \n") == "network error"

    def test_empty_message(self):
        assert normalize_for_fingerprint("") == ""

    def test_reports_differing_only_in_volatile_parts_normalize_equally(self):
        a = normalize_for_fingerprint("Order 1234 for 0f8fad5b-d9cb-469f-a165-70867728950e not found")
        b = normalize_for_fingerprint("Order 98 for 7C9E6679-7425-40DE-944B-E07FC1F90AE7 not found")

        assert a == b

    def test_appends_top_frames_of_stack(self):
        normalized = normalize_for_fingerprint("TypeError: x is undefined", JS_STACK)

        assert normalized == (
            "typeerror: x is undefined"
            "|handleClick@Button.tsx"
            "|onClick@App.tsx"
            "|HTMLButtonElement.dispatch@react-dom.js"
        )

    def test_stack_without_frames_appends_delimiter_only(self):
        assert normalize_for_fingerprint("Boom", "no frames here") == "boom|"


class TestFrameExtraction:
    """Test call-site extraction from stack traces."""

    def test_javascript_frames_limited_to_three(self):
        frames = extract_frames(JS_STACK)

        assert frames == [
            "handleClick@Button.tsx",
            "onClick@App.tsx",
            "HTMLButtonElement.dispatch@react-dom.js",
        ]

    def test_python_traceback_frames(self):
        assert extract_frames(PY_STACK) == ["handler@views.py", "run@service.py"]

    def test_unparseable_call_site_kept_as_text(self):
        assert extract_frames("Error\n    at <anonymous>") == ["at <anonymous>"]

    def test_custom_limit(self):
        assert extract_frames(JS_STACK, limit=1) == ["handleClick@Button.tsx"]


class TestHashing:
    """Test stable hash functions."""

    @pytest.mark.parametrize("text,expected", [
        ("", "6c62272e07bb014262b821756295c58d"),
        ("a", "d228cb696f1a8caf78912b704e4a8964"),
        ("foobar", "343e1662793c64bf6f0d3597ba446f18"),
    ])
    def test_fnv1a_128_vectors(self, text, expected):
        assert fnv1a_128(text) == expected

    @pytest.mark.parametrize("text,expected", [
        ("", "000015050000cde7"),
        ("a", "0002b5c4001a8aa6"),
        ("foobar", "50aad4927e3c5570"),
    ])
    def test_legacy_hash_vectors(self, text, expected):
        assert legacy_hash(text) == expected

    def test_hash_key_dispatches_by_algorithm(self):
        assert hash_key("foobar") == fnv1a_128("foobar")
        assert hash_key("foobar", "legacy") == legacy_hash("foobar")

    def test_hash_key_rejects_unknown_algorithm(self):
        with pytest.raises(ValueError, match="Unknown fingerprint algorithm"):
            hash_key("foobar", "md5")

    def test_non_ascii_input(self):
        digest = fnv1a_128("ошибка: 失败")

        assert len(digest) == 32
        assert digest == fnv1a_128("ошибка: 失败")


class TestComputeFingerprint:
    """Test fingerprint derivation."""

    def test_deterministic(self):
        first = compute_fingerprint("TypeError: x is undefined", JS_STACK)
        second = compute_fingerprint("TypeError: x is undefined", JS_STACK)

        assert first == second
        assert len(first) == 32

    def test_known_value(self):
        message = "TypeError: Cannot read property 'x' of undefined"

        assert compute_fingerprint(message) == "0fb15497eb468fef215869616906c37a"
        assert compute_fingerprint(message, algorithm="legacy") == "b6b9ab18039ba87a"

    def test_volatile_parts_share_fingerprint(self):
        assert compute_fingerprint("Timeout after 3000 ms") == compute_fingerprint("Timeout after 15 ms")

    def test_different_stacks_split_groups(self):
        other_stack = "Error\n    at render (/static/js/list.js:1:1)"

        assert compute_fingerprint("Boom", JS_STACK) != compute_fingerprint("Boom", other_stack)

    def test_override_used_verbatim(self):
        assert compute_fingerprint("anything", JS_STACK, override="checkout-flow") == "checkout-flow"

    def test_empty_override_is_ignored(self):
        assert compute_fingerprint("Boom", override="") == compute_fingerprint("Boom")

    def test_empty_message_has_fingerprint(self):
        assert compute_fingerprint("") == "6c62272e07bb014262b821756295c58d"
