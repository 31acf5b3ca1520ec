from datetime import datetime, timedelta, timezone

from rolodex_import.merge import (
    DuplicateIndex,
    are_contacts_identical,
    find_duplicates,
    has_less_or_equal_information,
    merge_contacts,
    merge_notes,
)
from rolodex_import.models import Contact, ContactInfo, OtherUrl


def make_contact(name="Ada Lovelace", emails=(), phones=(), linkedin="", notes="", **kwargs):
    return Contact(
        name=name,
        contact_info=ContactInfo(emails=list(emails), phones=list(phones), linkedin_url=linkedin),
        notes=notes,
        **kwargs,
    )


def test_find_duplicates_on_empty_store():
    assert find_duplicates([], make_contact()) == []


def test_single_existing_contact_reported_once():
    existing = make_contact(emails=["ada@lovelace.org"])
    incoming = make_contact(name="ada   LOVELACE", emails=["ADA@lovelace.org"])
    matches = find_duplicates([existing], incoming)
    assert len(matches) == 1
    assert matches[0].existing is existing
    assert matches[0].match_type == "name"


def test_phone_match_uses_digits_only():
    existing = make_contact(name="Charles Babbage", phones=["(555) 010-0100"])
    incoming = make_contact(name="C. Babbage", phones=["555.010.0100"])
    matches = find_duplicates([existing], incoming)
    assert [(m.match_type, m.match_value) for m in matches] == [("phone", "555.010.0100")]


def test_blank_phones_and_names_never_match():
    existing = make_contact(name="", phones=["ext."])
    incoming = make_contact(name="", phones=["n/a"])
    assert find_duplicates([existing], incoming) == []


def test_matches_against_several_records_in_store_order():
    by_phone = make_contact(name="Phone Person", phones=["+1 555 0100"])
    unrelated = make_contact(name="Someone Else")
    by_linkedin = make_contact(name="Link Person", linkedin="https://linkedin.com/in/ada")
    incoming = make_contact(
        name="Ada Lovelace", phones=["15550100"], linkedin="HTTPS://LINKEDIN.COM/IN/ADA"
    )
    matches = find_duplicates([by_phone, unrelated, by_linkedin], incoming)
    assert [m.existing for m in matches] == [by_phone, by_linkedin]
    assert [m.match_type for m in matches] == ["phone", "linkedin"]


def test_duplicate_index_matches_linear_lookup():
    stored = [
        make_contact(name="Ada Lovelace", emails=["ada@lovelace.org"]),
        make_contact(name="Grace Hopper", emails=["grace@navy.mil"], phones=["555-0199"]),
        make_contact(name="Alan Turing", linkedin="https://linkedin.com/in/alan"),
    ]
    index = DuplicateIndex(stored)
    assert len(index) == 3
    incoming = make_contact(name="G. Hopper", emails=["GRACE@navy.mil"], phones=["5550199"])
    found = index.find(incoming)
    assert [m.existing.name for m in found] == ["Grace Hopper"]
    assert found[0].match_type == "email"


def test_linkedin_connection_dates_tolerate_formatting():
    existing = make_contact(
        name="Jerry Lesnik",
        notes="LinkedIn connected: 9-May-25",
        linkedin="https://linkedin.com/in/jerry",
    )
    incoming = make_contact(
        name="Jerry Lesnik",
        notes="LinkedIn connected: 09 May 2025",
        linkedin="https://linkedin.com/in/jerry",
    )
    assert are_contacts_identical(existing, incoming) is True

    moved = make_contact(
        name="Jerry Lesnik",
        notes="LinkedIn connected: 10 May 2025",
        linkedin="https://linkedin.com/in/jerry",
    )
    assert are_contacts_identical(existing, moved) is False


def test_identity_rules_for_linkedin_and_notes():
    base = make_contact(emails=["ada@lovelace.org"], notes="Met at the salon\n\n  Likes engines")
    no_url = make_contact(emails=["ADA@lovelace.org"], notes="Met at the salon Likes engines")
    with_url = make_contact(emails=["ada@lovelace.org"], linkedin="https://linkedin.com/in/ada", notes=base.notes)
    other_url = make_contact(emails=["ada@lovelace.org"], linkedin="https://linkedin.com/in/other", notes=base.notes)

    assert are_contacts_identical(base, no_url)
    assert are_contacts_identical(base, with_url)
    assert not are_contacts_identical(with_url, other_url)
    assert not are_contacts_identical(base, make_contact(emails=["ada@lovelace.org"], company="Engines"))


def test_has_less_or_equal_information():
    existing = make_contact(
        emails=["ada@lovelace.org", "ada@engines.co.uk"],
        phones=["+44 20 7946 0000"],
        notes="Met at the salon. Likes engines.",
        company="Analytical Engines",
    )
    assert has_less_or_equal_information(existing, make_contact(emails=["ADA@lovelace.org"]))
    assert has_less_or_equal_information(existing, make_contact(notes="Likes engines."))
    assert has_less_or_equal_information(existing, make_contact(phones=["442079460000"]))
    assert not has_less_or_equal_information(existing, make_contact(phones=["555-0100"]))
    assert not has_less_or_equal_information(existing, make_contact(company="Difference Engines"))
    assert not has_less_or_equal_information(existing, make_contact(notes="Writes poetry"))
    assert not has_less_or_equal_information(existing, make_contact(name="Augusta Ada King"))


def test_merge_contacts_field_rules():
    created = datetime(2020, 1, 1, tzinfo=timezone.utc)
    existing = make_contact(
        emails=["ada@lovelace.org"],
        phones=["555-0100"],
        linkedin="https://linkedin.com/in/ada-old",
        notes="Birthday: Dec\nMet at the salon",
        company="Engines",
        source="google",
        created_at=created,
        updated_at=created,
    )
    existing.contact_info.other_urls = [OtherUrl("GitHub", "https://github.com/ada")]
    incoming = make_contact(
        name="Ada King Lovelace",
        emails=["ADA@lovelace.org", "ada@engines.co.uk"],
        phones=["555-0100", "555-0199"],
        linkedin="https://linkedin.com/in/ada",
        notes="Birthday: 10 Dec 1815\nLikes poetry",
        company="Analytical Engines",
        role="Programmer",
        source="linkedin",
    )
    incoming.contact_info.other_urls = [
        OtherUrl("GitHub", "https://github.com/ada"),
        OtherUrl("Website", "https://ada.example.org"),
    ]

    merged = merge_contacts(existing, incoming)

    assert merged.contact_id == existing.contact_id
    assert merged.created_at == created
    assert merged.updated_at > created
    assert merged.source == "google"
    assert merged.name == "Ada King Lovelace"
    assert merged.company == "Analytical Engines"
    assert merged.role == "Programmer"
    assert merged.contact_info.emails == ["ada@lovelace.org", "ada@engines.co.uk"]
    assert merged.contact_info.phones == ["555-0100", "555-0199"]
    assert merged.contact_info.linkedin_url == "https://linkedin.com/in/ada"
    assert merged.contact_info.other_urls == [
        OtherUrl("GitHub", "https://github.com/ada"),
        OtherUrl("Website", "https://ada.example.org"),
    ]
    assert merged.notes == "Birthday: 10 Dec 1815\nMet at the salon\nLikes poetry"


def test_merge_with_empty_incoming_changes_only_updated_at():
    before = datetime.now(timezone.utc) - timedelta(seconds=1)
    contact = make_contact(
        emails=["ada@lovelace.org"],
        phones=["555-0100"],
        linkedin="https://linkedin.com/in/ada",
        notes="Line one\n\nLine two",
        company="Engines",
        role="Programmer",
        location="London",
        updated_at=before,
    )
    merged = merge_contacts(contact, {})
    original = contact.to_dict()
    result = merged.to_dict()
    original.pop("updated_at")
    result.pop("updated_at")
    assert result == original
    assert merged.updated_at >= before


def test_merge_keeps_every_email_without_case_duplicates():
    cases = [
        (["a@x.io"], ["A@X.IO"]),
        (["a@x.io", "b@x.io"], ["c@x.io", "B@x.io"]),
        ([], ["d@x.io", "D@x.io"]),
        (["e@x.io"], []),
    ]
    for existing_emails, incoming_emails in cases:
        merged = merge_contacts(make_contact(emails=existing_emails), make_contact(emails=incoming_emails))
        emails = merged.contact_info.emails
        assert len({email.lower() for email in emails}) == len(emails)
        for email in existing_emails:
            assert email in emails


def test_merge_accepts_partial_mapping():
    existing = make_contact(company="Engines", emails=["ada@lovelace.org"])
    merged = merge_contacts(existing, {"company": "Analytical Engines", "contactInfo": {"phones": ["555-0100"]}})
    assert merged.company == "Analytical Engines"
    assert merged.contact_info.emails == ["ada@lovelace.org"]
    assert merged.contact_info.phones == ["555-0100"]
    assert merged.name == "Ada Lovelace"


def test_merge_notes_fallbacks():
    assert merge_notes("", "Only incoming") == "Only incoming"
    assert merge_notes("Only existing", "  ") == "Only existing"
    assert merge_notes("Same line", "Same line") == "Same line"
