from django import forms

from .models import User


class SignUpForm(forms.Form):
    """Signup fields. Every violated rule is reported, not just the first."""

    SIGNUP_ROLES = [
        (User.ROLE_DONOR, "Donor"),
        (User.ROLE_AGENT, "Agent"),
    ]

    first_name = forms.CharField(max_length=150, required=False)
    last_name = forms.CharField(max_length=150, required=False)
    email = forms.EmailField(required=False)
    password1 = forms.CharField(required=False, strip=False)
    password2 = forms.CharField(required=False, strip=False)
    role = forms.ChoiceField(choices=SIGNUP_ROLES, required=False)

    MIN_PASSWORD_LENGTH = 4
    REQUIRED_FIELDS = ("first_name", "last_name", "email", "password1", "password2")

    def clean(self):
        cleaned_data = super().clean()
        email = cleaned_data.get("email")
        password1 = cleaned_data.get("password1") or ""
        password2 = cleaned_data.get("password2") or ""

        if any(not (self.data.get(name) or "").strip() for name in self.REQUIRED_FIELDS):
            self.add_error(None, "Please fill in all the fields")
        if password1 != password2:
            self.add_error(None, "Passwords are not matching")
        if len(password1) < self.MIN_PASSWORD_LENGTH:
            self.add_error(None, f"Password length should be at least {self.MIN_PASSWORD_LENGTH} characters")

        if not cleaned_data.get("role"):
            cleaned_data["role"] = User.ROLE_DONOR
        if email:
            cleaned_data["email"] = email.strip().lower()
        return cleaned_data

    def error_messages_list(self):
        messages = []
        for field, errors in self.errors.items():
            for error in errors:
                messages.append(error if field == "__all__" else f"{field}: {error}")
        return messages
