from polyglot.application.id_service import generate_phrase_id, legacy_content_id


def test_generate_phrase_id_is_unique_and_prefixed():
    ids = {generate_phrase_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("phr_") and len(i) == 30 for i in ids)


def test_legacy_content_id_is_stable_hex():
    first = legacy_content_id("hello", "hola")
    assert first == legacy_content_id(" hello ", "hola\n")
    assert first != legacy_content_id("hola", "hello")
    int(first, 16)


def test_legacy_content_id_empty_input():
    # FNV-1a of "|" as one UTF-16 code unit
    assert legacy_content_id("", "") == format(((0x811C9DC5 ^ 0x7C) * 0x01000193) & 0xFFFFFFFF, "x")
