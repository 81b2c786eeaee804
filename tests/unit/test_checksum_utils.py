from content_compliance.utils.checksum import canonical_json, sha256_of_file, sha256_of_payload


def test_canonical_json_is_key_order_independent():
    assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1})
    assert canonical_json({"a": "é"}) == '{"a":"é"}'


def test_payload_digest_chains_on_previous():
    first = sha256_of_payload({"action": "submitted"})
    chained = sha256_of_payload({"action": "claimed"}, previous=first)

    assert len(first) == 64
    assert chained != sha256_of_payload({"action": "claimed"})
    assert chained == sha256_of_payload({"action": "claimed"}, previous=first)


def test_file_digest_tracks_content(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text('{"rules": []}', encoding="utf-8")
    before = sha256_of_file(path)
    assert before == sha256_of_file(path)

    path.write_text('{"rules": [1]}', encoding="utf-8")
    assert sha256_of_file(path) != before
