"""
Top-level package for the content_moderation project.

Policy documents are compiled by `content_moderation.policy_config` into a
structured graph that `content_moderation.rule_engine` evaluates per item.
"""

__all__: list[str] = []
