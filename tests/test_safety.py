import pytest

from calmy.services.safety import detect_danger_signs, normalize_text


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Saya mengalami pendarahan hebat", ["pendarahan hebat"]),
        ("PERDARAHAN   HEBAT sejak tadi malam", ["perdarahan hebat"]),
        ("Bidan, bayi tidak bergerak\nsejak pagi", ["bayi tidak bergerak"]),
        ("I have heavy bleeding and a high fever", ["heavy bleeding", "high fever"]),
        ("ketuban pecah dan kontraksi hebat", ["kontraksi hebat", "ketuban pecah"]),
    ],
)
def test_danger_signs_are_detected(message, expected):
    assert detect_danger_signs(message) == expected


@pytest.mark.parametrize(
    "message",
    [
        "Apa itu trimester pertama?",
        "Makanan apa yang baik untuk ibu hamil?",
        "Bagaimana cara mengisi jurnal Calmy?",
        "",
    ],
)
def test_regular_questions_pass(message):
    assert detect_danger_signs(message) == []


def test_normalize_text_collapses_whitespace_and_case():
    assert normalize_text("  Gerakan\tJanin   BERKURANG ") == "gerakan janin berkurang"


@pytest.mark.parametrize(
    "message",
    [
        "Apa saja tanda bahaya seperti demam tinggi?",
        "Apa itu kejang pada ibu hamil?",
        "What are the signs of heavy bleeding?",
    ],
)
def test_general_questions_about_danger_signs_reach_the_model(message):
    assert detect_danger_signs(message) == []


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Apa saja yang harus saya lakukan, saya pendarahan hebat", ["pendarahan hebat"]),
        ("What is happening, my water broke", ["water broke"]),
        ("Kenapa ya demam tinggi terus?", ["demam tinggi"]),
    ],
)
def test_personal_reports_phrased_as_questions_still_escalate(message, expected):
    assert detect_danger_signs(message) == expected
