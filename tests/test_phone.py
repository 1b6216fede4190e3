from atende.services.phone import agent_key, digits_only, same_number


class TestPhone:
    def test_digits_only(self):
        assert digits_only("+55 (85) 99999-0001") == "5585999990001"
        assert digits_only(None) == ""

    def test_agent_key_uses_trailing_digits(self):
        assert agent_key("5585999990001") == "99990001"
        assert agent_key("85 99990001", size=4) == "0001"

    def test_agent_key_too_short(self):
        assert agent_key("12345") == ""

    def test_same_number_ignores_country_code_and_ninth_digit(self):
        assert same_number("5585999990001", "8599990001")
        assert not same_number("5585999990001", "5585999990002")
        assert not same_number("", "")
