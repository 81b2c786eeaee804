from content_compliance.utils.citations import extract_section, make_label, regulation_label, short_title


def test_short_title_mapping():
    assert short_title("tga-advertising-code") == "Therapeutic Goods Advertising Code"
    assert short_title("National_Law") == "Health Practitioner Regulation National Law"
    assert short_title("state_health_policy") == "state health policy"


def test_extract_section_patterns():
    assert extract_section("Refer to APP 6.2(b) for guidance.") == "APP 6.2(b)"
    assert extract_section("See Section 113-116 of the Act") == "Section 113-116"
    assert extract_section("s 133(1)") == "s 133(1)"
    assert extract_section("No clause here.") is None


def test_make_label_combines_title_and_clause():
    assert make_label("Privacy Act 1988 (Cth)", "APP 6.2(b)") == "Privacy Act 1988 (Cth) — APP 6.2(b)"
    assert make_label("Ahpra Code of Conduct", "") == "Ahpra Code of Conduct"


def test_regulation_label_requires_source():
    assert regulation_label(None, "Section 4.2") is None
    assert regulation_label("tga-advertising-code", "Section 4.2") == "Therapeutic Goods Advertising Code — Section 4.2"
