import unittest

from application.commands import ExternalContext
from application.services import (
    confirm_account_link,
    describe_account,
    regenerate_api_key,
    request_account_link,
)
from fakes import InMemoryIdentityRepository


class ApplicationServicesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.identity_repo = InMemoryIdentityRepository()
        self.discord_ctx = ExternalContext(
            platform="discord",
            platform_user_id="1001",
            username="alice",
        )
        self.telegram_ctx = ExternalContext(
            platform="telegram",
            platform_user_id="555",
            username="alice_tg",
        )

    def test_request_link_creates_user_and_returns_token(self):
        result = request_account_link(self.discord_ctx, "alice_tg", self.identity_repo)

        self.assertTrue(result.success)
        self.assertEqual(result.target_username, "alice_tg")
        user = self.identity_repo.find_by_platform_id("discord", "1001")
        self.assertIsNotNone(user)
        self.assertEqual(user.link_token, f"alice_tg {result.token}")

    def test_request_link_rejects_bad_username(self):
        result = request_account_link(self.discord_ctx, "two words", self.identity_repo)

        self.assertFalse(result.success)
        self.assertIsNone(self.identity_repo.find_by_platform_id("discord", "1001"))

    def test_confirm_link_merges_both_accounts(self):
        token = request_account_link(self.discord_ctx, "alice_tg", self.identity_repo).token

        result = confirm_account_link(self.telegram_ctx, token, self.identity_repo)

        self.assertTrue(result.success)
        self.assertEqual(result.user.platform_ids, {"discord": "1001", "telegram": "555"})
        self.assertEqual(len(self.identity_repo.users), 1)

    def test_confirm_link_with_wrong_token(self):
        request_account_link(self.discord_ctx, "alice_tg", self.identity_repo)

        result = confirm_account_link(self.telegram_ctx, "not-the-token", self.identity_repo)

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Invalid or expired link token.")
        # The confirming user is never created for a bad token.
        self.assertEqual(len(self.identity_repo.users), 1)

    def test_confirm_link_without_username(self):
        ctx = ExternalContext(platform="telegram", platform_user_id="555", username=None)

        result = confirm_account_link(ctx, "whatever", self.identity_repo)

        self.assertFalse(result.success)

    def test_confirm_link_from_same_account(self):
        ctx = ExternalContext(platform="discord", platform_user_id="1001", username="alice")
        token = request_account_link(ctx, "alice", self.identity_repo).token

        result = confirm_account_link(ctx, token, self.identity_repo)

        self.assertFalse(result.success)
        self.assertEqual(result.message, "These accounts are already linked.")

    def test_confirm_link_clash_on_platform(self):
        other_discord = ExternalContext(platform="discord", platform_user_id="2002", username="alice2")
        token = request_account_link(self.discord_ctx, "alice2", self.identity_repo).token

        result = confirm_account_link(other_discord, token, self.identity_repo)

        self.assertFalse(result.success)
        self.assertIn("discord", result.message)
        self.assertEqual(len(self.identity_repo.users), 2)

    def test_confirm_link_storage_failure_is_reported(self):
        token = request_account_link(self.discord_ctx, "alice_tg", self.identity_repo).token
        self.identity_repo.fail_link = True

        result = confirm_account_link(self.telegram_ctx, token, self.identity_repo)

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Linking failed, please try again later.")
        self.assertEqual(len(self.identity_repo.users), 2)

    def test_regenerate_api_key(self):
        user = self.identity_repo.get_or_create_by_platform_id("discord", "1001")
        old_key = user.api_key

        result = regenerate_api_key(self.discord_ctx, self.identity_repo)

        self.assertTrue(result.success)
        self.assertNotEqual(result.api_key, old_key)
        self.assertIsNone(self.identity_repo.find_by_api_key(old_key))

    def test_describe_account_mentions_pending_link(self):
        request_account_link(self.discord_ctx, "alice_tg", self.identity_repo)

        result = describe_account(self.discord_ctx, self.identity_repo)

        self.assertIn("Class: user", result.message)
        self.assertIn("Pending link request for: alice_tg", result.message)


if __name__ == "__main__":
    unittest.main()
