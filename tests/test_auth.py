import pytest

from database import init_db, make_engine, session_factory
from errors import AuthError, DuplicateError, NotFoundOrUnauthorized, ValidationError
from schemas import LoginIn, ProfileIn, SignupIn
from services import DEFAULT_CATEGORIES, CategoryService, UserService
from tokens import bearer_token, issue_token, verify_token

SECRET = "test-secret"


def make_session():
    engine = make_engine("sqlite+pysqlite:///:memory:")
    init_db(engine)
    return session_factory(engine)()


def signup_in(**overrides) -> SignupIn:
    values = {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "Ada@Example.com",
        "password": "engine#42x",
        "confirm_password": "engine#42x",
    }
    values.update(overrides)
    return SignupIn(**values)


def test_signup_normalises_email_and_hashes_password() -> None:
    session = make_session()

    user = UserService(session).signup(signup_in(), seed_defaults=False)

    assert user.email == "ada@example.com"
    assert user.password_hash != "engine#42x"
    assert user.password_hash.startswith("$2")
    assert CategoryService(session, user.id).list_all() == []


def test_signup_seeds_default_categories() -> None:
    session = make_session()

    user = UserService(session).signup(signup_in(), seed_defaults=True)

    names = {cat.name for cat in CategoryService(session, user.id).list_all()}
    assert names == {name for name, _, _ in DEFAULT_CATEGORIES}


@pytest.mark.parametrize(
    "overrides",
    [
        {"first_name": " "},
        {"confirm_password": "engine#43x"},
        {"password": "short#1", "confirm_password": "short#1"},
        {"password": "noDigits!!", "confirm_password": "noDigits!!"},
        {"password": "nospecial12", "confirm_password": "nospecial12"},
    ],
)
def test_signup_rejects_invalid_input(overrides) -> None:
    session = make_session()

    with pytest.raises(ValidationError):
        UserService(session).signup(signup_in(**overrides), seed_defaults=False)


def test_signup_rejects_existing_email_in_any_case() -> None:
    session = make_session()
    UserService(session).signup(signup_in(), seed_defaults=False)

    with pytest.raises(DuplicateError):
        UserService(session).signup(
            signup_in(email="ADA@example.com"), seed_defaults=False
        )


def test_authenticate_checks_password() -> None:
    session = make_session()
    service = UserService(session)
    user = service.signup(signup_in(), seed_defaults=False)

    login = LoginIn(email="ada@example.com", password="engine#42x")
    assert service.authenticate(login).id == user.id
    with pytest.raises(AuthError):
        service.authenticate(LoginIn(email="ada@example.com", password="wrong#42x"))
    with pytest.raises(AuthError):
        service.authenticate(LoginIn(email="bob@example.com", password="engine#42x"))
    with pytest.raises(ValidationError):
        service.authenticate(LoginIn(email="", password=""))


def test_update_profile_changes_password_with_old_password() -> None:
    session = make_session()
    service = UserService(session)
    user = service.signup(signup_in(), seed_defaults=False)
    base = {"first_name": "Ada", "last_name": "King", "email": "ada@example.com"}

    with pytest.raises(ValidationError):
        service.update_profile(user.id, ProfileIn(**base, new_password="better#99x"))
    with pytest.raises(AuthError):
        service.update_profile(
            user.id,
            ProfileIn(**base, old_password="nope#1234", new_password="better#99x"),
        )

    updated = service.update_profile(
        user.id,
        ProfileIn(**base, old_password="engine#42x", new_password="better#99x"),
    )

    assert updated.last_name == "King"
    assert service.authenticate(
        LoginIn(email="ada@example.com", password="better#99x")
    ).id == user.id


def test_update_profile_rejects_email_of_another_user() -> None:
    session = make_session()
    service = UserService(session)
    ada = service.signup(signup_in(), seed_defaults=False)
    service.signup(signup_in(email="bob@example.com"), seed_defaults=False)

    with pytest.raises(DuplicateError):
        service.update_profile(
            ada.id,
            ProfileIn(first_name="Ada", last_name="L", email="BOB@example.com"),
        )


def test_get_unknown_user() -> None:
    with pytest.raises(NotFoundOrUnauthorized):
        UserService(make_session()).get(42)


def test_token_round_trip() -> None:
    token = issue_token(7, "ada@example.com", secret=SECRET)

    assert verify_token(token, secret=SECRET) == 7


def test_token_rejections() -> None:
    token = issue_token(7, secret=SECRET)

    with pytest.raises(AuthError, match="expired"):
        verify_token(token, max_age_secs=-1, secret=SECRET)
    with pytest.raises(AuthError, match="Invalid token"):
        verify_token(token, secret="other-secret")
    signature = token.partition(".")[2]
    forged = issue_token(8, secret=SECRET).partition(".")[0] + "." + signature
    with pytest.raises(AuthError, match="Invalid token"):
        verify_token(forged, secret=SECRET)
    with pytest.raises(AuthError, match="No token"):
        verify_token("", secret=SECRET)


def test_bearer_token_parsing() -> None:
    assert bearer_token("Bearer abc.def") == "abc.def"
    with pytest.raises(AuthError):
        bearer_token(None)
    with pytest.raises(AuthError):
        bearer_token("Token abc")
