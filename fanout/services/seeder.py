from __future__ import annotations
import random
from datetime import datetime, timedelta
from typing import Any, Dict, Sequence
from faker import Faker

from fanout.services.hashtags import extract_hashtags

SEED = 1337

fake = Faker()

def seed_random_generators(seed: int = SEED) -> None:
    random.seed(seed)
    Faker.seed(seed)
    fake.seed_instance(seed)
    fake.unique.clear()

def _ms(when: datetime) -> int:
    return int(when.timestamp() * 1000)

def make_people(tree: Dict[str, Any], n_users: int) -> list[str]:
    uids = []
    for _ in range(n_users):
        uid = fake.unique.uuid4().replace("-", "")[:20]
        name = fake.name()
        tree.setdefault("people", {})[uid] = {
            "full_name": name,
            "profile_picture": f"https://example.com/{uid}.jpg",
            "notificationEnabled": random.random() < 0.5,
            "_search_index": {
                "full_name": name.lower(),
                "reversed_full_name": " ".join(reversed(name.lower().split(" "))),
            },
        }
        uids.append(uid)
    return uids

def make_posts(tree: Dict[str, Any], uids: Sequence[str], n_posts: int, now: datetime) -> list[str]:
    # deterministic pool, a few tags much more popular than the rest
    tags = ["cat", "dog", "sunset", "food", "travel", "beach", "nofilter", "art", "city", "friends"]
    weights = [5, 5, 3, 3, 3, 1, 1, 1, 1, 1]
    post_ids = []
    for _ in range(n_posts):
        uid = random.choice(uids)
        post_id = fake.unique.uuid4().replace("-", "")[:20]
        created = now - timedelta(days=random.randint(0, 60), minutes=random.randint(0, 1440))
        chosen = list(dict.fromkeys(random.choices(tags, weights=weights, k=random.randint(0, 3))))
        text = fake.sentence(nb_words=random.randint(4, 12)) + "".join(f" #{t}" for t in chosen)
        full_uri = f"gs://demo.appspot.com/{uid}/full/{post_id}/photo.jpg"
        thumb_uri = f"gs://demo.appspot.com/{uid}/thumb/{post_id}/photo.jpg"
        tree.setdefault("posts", {})[post_id] = {
            "text": text,
            "timestamp": _ms(created),
            "author": {"uid": uid, "full_name": tree["people"][uid]["full_name"]},
            "full_url": f"https://example.com/full/{post_id}.jpg?token=x",
            "thumb_url": f"https://example.com/thumb/{post_id}.jpg?token=x",
            "full_storage_uri": full_uri,
            "thumb_storage_uri": thumb_uri,
        }
        tree["people"][uid].setdefault("posts", {})[post_id] = True
        tree.setdefault("feed", {}).setdefault(uid, {})[post_id] = True
        for tag in extract_hashtags(text):
            tree.setdefault("hashtags", {}).setdefault(tag, {})[post_id] = True
        post_ids.append(post_id)
    return post_ids

def make_comments(tree: Dict[str, Any], post_ids: Sequence[str], uids: Sequence[str], frac_with_comments=0.6):
    for post_id in post_ids:
        if random.random() >= frac_with_comments:
            continue
        created = tree["posts"][post_id]["timestamp"]
        for _ in range(random.randint(1, 4)):
            uid = random.choice(uids)
            comment_id = fake.unique.uuid4().replace("-", "")[:20]
            tree.setdefault("comments", {}).setdefault(post_id, {})[comment_id] = {
                "text": fake.sentence(),
                "timestamp": created + random.randint(1, 10_000) * 1000,
                "author": {"uid": uid, "full_name": tree["people"][uid]["full_name"]},
            }

def make_likes(tree: Dict[str, Any], post_ids: Sequence[str], uids: Sequence[str], max_likes=8):
    for post_id in post_ids:
        created = tree["posts"][post_id]["timestamp"]
        for uid in random.sample(list(uids), k=min(len(uids), random.randint(0, max_likes))):
            tree.setdefault("likes", {}).setdefault(post_id, {})[uid] = created + random.randint(1, 10_000) * 1000

def make_followers(tree: Dict[str, Any], uids: Sequence[str], max_followers=5):
    """
    Follower edges plus feed fan-out: a follower's feed gets the followed user's posts.
    """
    for uid in uids:
        others = [u for u in uids if u != uid]
        for follower in random.sample(others, k=min(len(others), random.randint(0, max_followers))):
            tree.setdefault("followers", {}).setdefault(uid, {})[follower] = True
            for post_id in tree["people"][uid].get("posts", {}):
                tree.setdefault("feed", {}).setdefault(follower, {})[post_id] = True

def build_tree(n_users: int = 20, n_posts: int = 100, now: datetime | None = None) -> Dict[str, Any]:
    """Build a complete demo tree; call seed_random_generators() first for reproducible data."""
    now = now or datetime.utcnow()
    tree: Dict[str, Any] = {}
    uids = make_people(tree, n_users)
    post_ids = make_posts(tree, uids, n_posts, now)
    make_comments(tree, post_ids, uids)
    make_likes(tree, post_ids, uids)
    make_followers(tree, uids)
    return tree
