import pytest

from rolodex_import.exceptions import ImportPipelineError, ParseError
from rolodex_import.formats import (
    detect_format,
    inspect_csv,
    matches_google,
    matches_linkedin,
    matches_rolodex,
)
from rolodex_import.models import Contact, ContactInfo, OtherUrl
from rolodex_import.normalization import read_csv_text
from rolodex_import.parsers import finalize_contact, parse_csv, parse_other_urls, parse_rows

LINKEDIN_HEADERS = ["First Name", "Last Name", "Email Address", "Company", "Position", "Connected On", "URL"]
GOOGLE_HEADERS = [
    "First Name",
    "Middle Name",
    "Last Name",
    "Nickname",
    "Birthday",
    "Labels",
    "E-mail 1 - Value",
    "Phone 1 - Value",
    "Organization Name",
    "Organization Title",
]
ROLODEX_HEADERS = [
    "Name",
    "Company",
    "Role",
    "Location",
    "Emails",
    "Phones",
    "LinkedIn URL",
    "Other URLs",
    "Notes",
    "Source",
    "Created Date",
    "Updated Date",
]
CUSTOM_HEADERS = ["Full Name", "Mail", "Cell"]

FIXTURES = {
    "linkedin": LINKEDIN_HEADERS,
    "google": GOOGLE_HEADERS,
    "rolodex": ROLODEX_HEADERS,
    "custom": CUSTOM_HEADERS,
}


@pytest.mark.parametrize("expected, headers", FIXTURES.items())
def test_detect_format_on_fixtures(expected, headers):
    assert detect_format(headers) == expected
    assert detect_format(headers) == detect_format(list(headers))


def test_detectors_are_mutually_exclusive_on_fixtures():
    for headers in FIXTURES.values():
        claims = [matches(headers) for matches in (matches_rolodex, matches_linkedin, matches_google)]
        assert sum(claims) <= 1


def test_linkedin_detection_is_case_insensitive_substring():
    headers = ["first name", "LAST NAME", "Profile URL", "Connected On"]
    assert matches_linkedin(headers)
    assert detect_format(headers) == "linkedin"


def test_google_new_style_headers():
    assert detect_format(["Given Name", "Family Name", "Group Membership"]) == "google"
    assert detect_format(["Name", "E-mail 2 - Value"]) == "google"


def test_linkedin_headers_disqualify_google():
    assert matches_google(["E-mail 1 - Value", "Connected On"]) is False
    assert matches_google(["Birthday", "Nickname", "Position"]) is False


def test_rolodex_needs_an_optional_header():
    assert detect_format(["Name", "Email", "Company"]) == "custom"
    assert detect_format(["name", "email", "company", "title"]) == "rolodex"


def test_linkedin_row_becomes_contact():
    text = "\n".join(
        [
            ",".join(LINKEDIN_HEADERS),
            "Jane,Doe,jane@doe.dev,Acme,Engineer,09 May 2025,https://www.linkedin.com/in/janedoe",
        ]
    )
    detection, contacts = parse_csv(text)
    assert detection.parser_type == "linkedin"
    assert detection.row_count == 1
    assert len(contacts) == 1
    contact = contacts[0]
    assert contact.name == "Jane Doe"
    assert contact.company == "Acme"
    assert contact.role == "Engineer"
    assert contact.contact_info.linkedin_url == "https://www.linkedin.com/in/janedoe"
    assert contact.contact_info.emails == ["jane@doe.dev"]
    assert "LinkedIn connected: 09 May 2025" in contact.notes
    assert contact.source == "linkedin"


def test_linkedin_notes_preamble_is_skipped():
    text = "\n".join(
        [
            "Notes:",
            '"When exporting your connection data, you may notice that some of the email addresses are missing."',
            "",
            "First Name,Last Name,URL,Email Address,Company,Position,Connected On",
            "John,Smith,https://www.linkedin.com/in/jsmith,,Initech,Analyst,12 Jan 2024",
        ]
    )
    headers, rows = read_csv_text(text)
    assert headers[0] == "First Name"
    detection, contacts = parse_csv(text)
    assert detection.parser_type == "linkedin"
    assert contacts[0].name == "John Smith"
    assert contacts[0].contact_info.emails == []


def test_google_row_folds_metadata_into_notes():
    row = {
        "First Name": "Ada",
        "Middle Name": "",
        "Last Name": "Lovelace",
        "E-mail 1 - Value": "ada@lovelace.org ::: ada@engines.co.uk",
        "Phone 1 - Value": "+44 20 7946 0000",
        "Organization Name": "Analytical Engines",
        "Organization Title": "Programmer",
        "Organization Department": "Research",
        "Birthday": "1815-12-10",
        "Labels": "* myContacts",
        "Relation 1 - Label": "Spouse",
        "Relation 1 - Value": "William King",
        "Address 1 - City": "London",
        "Website 1 - Value": "https://ada.example.org",
    }
    contacts = parse_rows("google", [row], list(row))
    assert len(contacts) == 1
    contact = contacts[0]
    assert contact.name == "Ada Lovelace"
    assert contact.contact_info.emails == ["ada@lovelace.org", "ada@engines.co.uk"]
    assert contact.contact_info.phones == ["+44 20 7946 0000"]
    assert contact.company == "Analytical Engines"
    assert contact.role == "Programmer"
    assert contact.location == "London"
    assert contact.contact_info.other_urls == [OtherUrl(platform="Website", url="https://ada.example.org")]
    notes = contact.notes.splitlines()
    assert "Birthday: 1815-12-10" in notes
    assert "Department: Research" in notes
    assert "Labels: * myContacts" in notes
    assert "Spouse: William King" in notes
    assert contact.source == "google"


def test_placeholder_names_and_dropped_rows():
    rows = [
        {"First Name": "", "Last Name": "", "E-mail 1 - Value": "john.smith@corp.io", "Photo": ""},
        {"First Name": "", "Last Name": "", "E-mail 1 - Value": "", "Phone 1 - Value": "555-0100"},
        {"First Name": "", "Last Name": "", "E-mail 1 - Value": "", "Photo": "https://photos/1"},
        {"First Name": "", "Last Name": "", "Nickname": "Ziggy"},
    ]
    contacts = parse_rows("google", rows)
    assert [contact.name for contact in contacts] == ["John Smith", "Contact 2", "Ziggy"]


def test_rolodex_row_reads_export_columns():
    row = {
        "Name": "Grace Hopper",
        "Company": "US Navy",
        "Role": "Rear Admiral",
        "Location": "Arlington",
        "Emails": "grace@navy.mil; grace@navy.mil; grace@cobol.org",
        "Phones": "555-0100",
        "LinkedIn URL": "https://www.linkedin.com/in/grace",
        "Other URLs": "Twitter: https://twitter.com/grace; https://grace.example.org",
        "Notes": "Invented the compiler",
        "Source": "linkedin",
        "Created Date": "2024-01-02T03:04:05+00:00",
        "Updated Date": "",
    }
    contact = parse_rows("rolodex", [row], list(row))[0]
    assert contact.name == "Grace Hopper"
    assert contact.contact_info.emails == ["grace@navy.mil", "grace@cobol.org"]
    assert contact.contact_info.other_urls == [
        OtherUrl(platform="Twitter", url="https://twitter.com/grace"),
        OtherUrl(platform="Website", url="https://grace.example.org"),
    ]
    assert contact.source == "linkedin"
    assert contact.created_at.year == 2024
    assert contact.created_at.tzinfo is not None


def test_rolodex_unknown_source_falls_back_to_manual():
    row = {"Name": "Alan Turing", "Email": "alan@bletchley.uk", "Company": "GCHQ", "Source": "carrier pigeon"}
    assert parse_rows("rolodex", [row])[0].source == "manual"


def test_parse_other_urls_ignores_garbage():
    assert parse_other_urls("") == []
    assert parse_other_urls("no separator here; GitHub: https://github.com/x") == [
        OtherUrl(platform="GitHub", url="https://github.com/x")
    ]


def test_custom_rows_need_an_adapter():
    with pytest.raises(ImportPipelineError):
        parse_rows("custom", [{"Full Name": "X"}])


def test_blank_rows_are_discarded():
    text = "Name,Email,Company,Notes\n,,,\n  , ,,\nAda,ada@lovelace.org,Engines,hi\n"
    detection = inspect_csv(text)
    assert detection.parser_type == "rolodex"
    assert detection.row_count == 1
    assert detection.sample_row["Name"] == "Ada"


def test_empty_csv_is_a_parse_error():
    with pytest.raises(ParseError):
        read_csv_text("")
    with pytest.raises(ParseError):
        read_csv_text("   \n  ")


def test_trailing_comma_rows_keep_their_columns():
    text = "Name,Email,Company,Phone\nAda Lovelace,ada@lovelace.org,Engines,555-0100,\n"
    headers, rows = read_csv_text(text)
    assert headers == ["Name", "Email", "Company", "Phone"]
    assert rows == [{"Name": "Ada Lovelace", "Email": "ada@lovelace.org", "Company": "Engines", "Phone": "555-0100"}]

    detection, contacts = parse_csv(text)
    assert detection.parser_type == "rolodex"
    assert contacts[0].name == "Ada Lovelace"
    assert contacts[0].contact_info.emails == ["ada@lovelace.org"]
    assert contacts[0].company == "Engines"


def test_finalize_contact_drops_repeated_values():
    contact = Contact(
        name="Ada Lovelace",
        contact_info=ContactInfo(
            emails=["ada@lovelace.org", "ADA@lovelace.org", "ada@engines.co.uk"],
            phones=["555-0100", "555-0100 ", "555-0199"],
            other_urls=[OtherUrl("GitHub", "https://github.com/ada"), OtherUrl("GitHub", "https://github.com/ada")],
        ),
    )
    finalized = finalize_contact(contact, 1)
    assert finalized.contact_id == contact.contact_id
    assert finalized.contact_info.emails == ["ada@lovelace.org", "ada@engines.co.uk"]
    assert finalized.contact_info.phones == ["555-0100", "555-0199"]
    assert finalized.contact_info.other_urls == [OtherUrl("GitHub", "https://github.com/ada")]
