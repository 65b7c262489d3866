"""
Agora — Community Data-Sync Layer
==================================
Discussions, bounties, chat, profiles and moderation for a community
application.  Owns the relational schema, performs the authorization checks,
and keeps live views fresh through a single change-subscription multiplexer.

Package layout::

    agora/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Enumerated values shared by services and API
    ├── errors.py          # Error taxonomy + MutationResult
    ├── session.py         # SessionContext (viewer identity, lifecycle)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session helper
    │   └── models.py      # All ORM models
    ├── realtime/
    │   ├── events.py      # ChangeEvent envelope + filter parsing
    │   ├── subscriptions.py  # (table, filter) multiplexer with refcounts
    │   └── notify.py      # Change capture hooks + PG LISTEN/NOTIFY bridge
    ├── services/
    │   ├── discussion_service.py  # Discussion aggregation + likes
    │   ├── reply_service.py       # Reply threads
    │   ├── bounty_service.py      # Bounty CRUD
    │   ├── chat_service.py        # Chat list (client + server paths)
    │   ├── message_service.py     # Message streams + attachments
    │   ├── admin_service.py       # Audited role / moderation mutations
    │   ├── rpc.py                 # Scalar server-side procedures
    │   ├── profile_service.py     # Profiles
    │   ├── follow_service.py      # Follow graph
    │   ├── search_service.py      # Discussion + user search
    │   ├── storage_service.py     # Object storage (uploads → public URL)
    │   ├── subscription_access.py # Who may watch which realtime rows
    │   └── tags.py                # Tag normalization + sync for tagged rows
    ├── feeds/
    │   ├── base.py        # LiveFeed lifecycle, Notice, mutation wrapping
    │   ├── discussions.py # DiscussionFeed, ReplyThread
    │   ├── bounties.py    # BountyFeed
    │   ├── chats.py       # ChatListFeed, MessageFeed
    │   ├── profiles.py    # ProfileFeed, FollowPanel
    │   └── admin.py       # AdminPanel, RoleWatcher
    └── api/
        ├── __main__.py    # python -m agora.api (uvicorn)
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, config, bearer → SessionContext
        └── routes/        # REST endpoints, realtime websocket, functions
"""

__version__ = "0.1.0"
