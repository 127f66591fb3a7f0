"""
Tests for request schemas: sanitization and field rules.
"""

import pytest
from pydantic import ValidationError

from revengers.models.schemas import (
    AdminLoginRequest,
    ContactCreate,
    ManagerCreate,
    PlayerCreate,
    PlayerResponse,
    PlayerUpdate,
    TrophyCreate,
    TrophyUpdate,
    max_trophy_year,
)


def _error_fields(exc: ValidationError):
    return {".".join(str(p) for p in err["loc"]) for err in exc.errors()}


class TestPlayerCreate:
    def test_valid_payload_by_alias(self):
        player = PlayerCreate.model_validate({"name": "Kai Tan", "jerseyNumber": "7", "stars": 4})
        assert player.name == "Kai Tan"
        assert player.jersey_number == 7
        assert player.stars == 4

    def test_html_is_stripped_from_name(self):
        player = PlayerCreate.model_validate({"name": "<b>Kai</b>", "jerseyNumber": 7, "stars": 4})
        assert player.name == "Kai"

    def test_name_with_digits_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            PlayerCreate.model_validate({"name": "Kai99", "jerseyNumber": 7, "stars": 4})
        assert "name" in _error_fields(exc_info.value)

    def test_name_that_is_only_markup_rejected(self):
        with pytest.raises(ValidationError):
            PlayerCreate.model_validate({"name": "<script>x</script>", "jerseyNumber": 7, "stars": 4})

    @pytest.mark.parametrize("number", [0, 100, -3])
    def test_jersey_number_bounds(self, number):
        with pytest.raises(ValidationError) as exc_info:
            PlayerCreate.model_validate({"name": "Kai", "jerseyNumber": number, "stars": 4})
        assert "jerseyNumber" in _error_fields(exc_info.value)

    @pytest.mark.parametrize("stars", [0, 6])
    def test_stars_bounds(self, stars):
        with pytest.raises(ValidationError):
            PlayerCreate.model_validate({"name": "Kai", "jerseyNumber": 7, "stars": stars})

    def test_dangerous_keys_are_dropped(self):
        player = PlayerCreate.model_validate(
            {"name": "Kai", "jerseyNumber": 7, "stars": 4, "__proto__": {"admin": True}}
        )
        assert "__proto__" not in player.model_dump()


class TestPlayerUpdate:
    def test_partial_update(self):
        update = PlayerUpdate.model_validate({"stars": 5})
        assert update.model_dump(exclude_none=True) == {"stars": 5}

    def test_empty_update_rejected(self):
        with pytest.raises(ValidationError):
            PlayerUpdate.model_validate({})


class TestPlayerResponse:
    def test_serializes_with_camel_case_aliases(self):
        response = PlayerResponse.model_validate(
            {"id": 1, "name": "Kai", "jersey_number": 7, "stars": 4, "image_url": None, "joined_date": None}
        )
        dumped = response.model_dump(by_alias=True)
        assert dumped["jerseyNumber"] == 7
        assert "imageUrl" in dumped
        assert "joinedDate" in dumped


class TestManagerCreate:
    def test_valid(self):
        manager = ManagerCreate.model_validate({"name": "Rae Lin", "role": "Head Coach"})
        assert manager.role == "Head Coach"

    def test_role_with_symbols_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            ManagerCreate.model_validate({"name": "Rae", "role": "Coach #1"})
        assert "role" in _error_fields(exc_info.value)


class TestTrophy:
    def test_valid(self):
        trophy = TrophyCreate.model_validate({"name": "Regional Cup 2023", "year": 2023})
        assert trophy.year == 2023

    def test_year_before_1900_rejected(self):
        with pytest.raises(ValidationError):
            TrophyCreate.model_validate({"name": "Old Cup", "year": 1899})

    def test_next_year_allowed(self):
        trophy = TrophyCreate.model_validate({"name": "Future Cup", "year": max_trophy_year()})
        assert trophy.year == max_trophy_year()

    def test_year_after_next_rejected(self):
        with pytest.raises(ValidationError):
            TrophyCreate.model_validate({"name": "Future Cup", "year": max_trophy_year() + 1})

    def test_update_name_only(self):
        update = TrophyUpdate.model_validate({"name": "Renamed Cup"})
        assert update.model_dump(exclude_none=True) == {"name": "Renamed Cup"}

    def test_entity_encoded_script_is_not_stored_as_html(self):
        with pytest.raises(ValidationError):
            TrophyCreate.model_validate({"name": "&lt;script&gt;alert(1)&lt;/script&gt;", "year": 2020})

    def test_entity_encoded_markup_is_stripped(self):
        trophy = TrophyCreate.model_validate({"name": "Spring &lt;b&gt;Cup&lt;/b&gt;", "year": 2020})
        assert trophy.name == "Spring Cup"


class TestContactCreate:
    def test_valid_and_normalized(self):
        contact = ContactCreate.model_validate(
            {"name": "John Doe", "email": "John@Example.com", "whatsapp": "+1 234-567-8901"}
        )
        assert contact.email == "john@example.com"
        assert contact.whatsapp == "+12345678901"

    def test_invalid_email(self):
        with pytest.raises(ValidationError) as exc_info:
            ContactCreate.model_validate({"name": "John Doe", "email": "invalid-email", "whatsapp": "1234567890"})
        assert "email" in _error_fields(exc_info.value)

    def test_short_whatsapp(self):
        with pytest.raises(ValidationError) as exc_info:
            ContactCreate.model_validate({"name": "John Doe", "email": "john@example.com", "whatsapp": "12345"})
        assert "whatsapp" in _error_fields(exc_info.value)

    def test_whatsapp_with_letters(self):
        with pytest.raises(ValidationError):
            ContactCreate.model_validate(
                {"name": "John Doe", "email": "john@example.com", "whatsapp": "12345abcde"}
            )


class TestAdminLoginRequest:
    def test_valid(self):
        login = AdminLoginRequest.model_validate({"username": "admin", "password": "secret"})
        assert login.username == "admin"

    def test_password_is_not_sanitized(self):
        """Passwords reach bcrypt byte-for-byte, markup included."""
        login = AdminLoginRequest.model_validate({"username": "admin", "password": " <b>pw</b> "})
        assert login.password == " <b>pw</b> "

    @pytest.mark.parametrize("username", ["ab", "a" * 31, "ad min", "admin!"])
    def test_bad_usernames(self, username):
        with pytest.raises(ValidationError) as exc_info:
            AdminLoginRequest.model_validate({"username": username, "password": "secret"})
        assert "username" in _error_fields(exc_info.value)

    def test_empty_password(self):
        with pytest.raises(ValidationError):
            AdminLoginRequest.model_validate({"username": "admin", "password": ""})
