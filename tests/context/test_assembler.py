"""Tests for RelevanceAssembler.build_context."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from context.assembler import RelevanceAssembler
from context.errors import InvalidInput
from context.lookups import ImageMatch
from context.models import MAX_INJECTED_ENTRIES
from context.settings import ContextSettings
from conversations.models import Message
from memory.models import Fact, FactCategory
from observability import metrics
from shared_types import ChatKind, EntryPriority, EntryRole, MessageRole

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
AGENT = "6280000000000@s.whatsapp.net"
U1 = "628111111111@s.whatsapp.net"
U2 = "628222222222@s.whatsapp.net"
OFFICE = "1203@g.us"
FUTSAL = "999@g.us"
NAMES = {AGENT: "Qi", U1: "Budi Santoso", U2: "Sari"}


class World:
    """Conversation fixture builder with a monotonic clock (one minute per message)."""

    def __init__(self, store, facts):
        self.store = store
        self.facts = facts
        self.clock = 0

    def say(self, conversation_id, sender, content, title=None, msg_id=None):
        self.clock += 1
        message = Message(
            id=msg_id or f"m{self.clock}",
            conversation_id=conversation_id,
            sender_id=sender,
            sender_name=NAMES.get(sender, sender),
            content=content,
            timestamp=T0 + timedelta(minutes=self.clock),
            role=MessageRole.AGENT if sender == AGENT else MessageRole.USER,
        )
        self.store.append_message(conversation_id, message, title=title)
        return message

    def query(self, conversation_id, content, sender=U1, **kwargs):
        self.clock += 1
        return Message(
            id=f"q{self.clock}",
            conversation_id=conversation_id,
            sender_id=sender,
            sender_name=NAMES.get(sender, sender),
            content=content,
            timestamp=T0 + timedelta(minutes=self.clock),
            **kwargs,
        )

    def assembler(self, image_lookup=None, facts="default", **settings):
        return RelevanceAssembler(
            self.store,
            self.facts if facts == "default" else facts,
            settings=ContextSettings(**settings),
            agent_id=AGENT,
            agent_name="Qi",
            image_lookup=image_lookup,
        )


@pytest.fixture
def world(memory_store, fact_store):
    return World(memory_store, fact_store)


class TestBaseWindow:
    def test_most_recent_n(self, world):
        sent = [world.say(OFFICE, U1 if i % 2 else U2, f"pesan {i}") for i in range(25)]
        window = world.assembler(max_relevant_messages=20).build_context(world.query(OFFICE, "oke"), OFFICE)
        assert window.message_ids() == [m.id for m in sent[-20:]]

    def test_topic_augmentation_truncated_back(self, world):
        sent = [world.say(OFFICE, U2, "makan siang yuk" if i < 5 else f"pesan {i}") for i in range(25)]
        window = world.assembler(max_relevant_messages=20).build_context(world.query(OFFICE, "mau makan?"), OFFICE)
        assert window.message_ids() == [m.id for m in sent[-20:]]

    def test_short_conversation(self, world):
        sent = [world.say(OFFICE, U1, f"pesan {i}") for i in range(3)]
        window = world.assembler().build_context(world.query(OFFICE, "oke"), OFFICE)
        assert window.message_ids() == [m.id for m in sent]

    def test_reply_neighbours_not_duplicated(self, world):
        sent = [world.say(OFFICE, U1, f"pesan {i}") for i in range(5)]
        query = world.query(OFFICE, "setuju", is_reply=True, replied_to_id=sent[2].id)
        window = world.assembler().build_context(query, OFFICE)
        ids = window.message_ids()
        assert ids == [m.id for m in sent]
        assert len(ids) == len(set(ids))

    def test_message_entry_fields(self, world):
        world.say(OFFICE, U1, "halo")
        world.say(OFFICE, AGENT, "halo juga")
        window = world.assembler().build_context(world.query(OFFICE, "oke"), OFFICE)
        user, agent = window.message_entries
        assert user.role == EntryRole.USER
        assert user.name == "Budi Santoso"
        assert agent.role == EntryRole.ASSISTANT
        assert agent.name == "Qi"
        assert agent.priority == EntryPriority.CONVERSATION


class TestChatHeader:
    def test_group_header_first(self, world):
        world.say(OFFICE, U1, "pagi", title="Kantor")
        world.say(OFFICE, U2, "pagi juga")
        window = world.assembler().build_context(world.query(OFFICE, "oke"), OFFICE)
        header = window.entries[0]
        assert header.source_label == "chat_header"
        assert header.role == EntryRole.SYSTEM
        assert '"Kantor" with 2 members' in header.content
        assert "Recently active: Sari, Budi Santoso." in header.content

    def test_private_header(self, world):
        world.say(OFFICE, U1, "pagi", title="Kantor")
        world.say(U1, U1, "halo Qi")
        world.say(U1, U1, "lagi apa?")
        window = world.assembler().build_context(world.query(U1, "oke"), U1)
        header = window.by_label("chat_header")[0]
        assert "private chat with Budi Santoso" in header.content
        assert "has sent 2 messages" in header.content
        assert "also in: Kantor" in header.content

    def test_agent_role_not_counted_without_agent_id(self, world):
        for i in range(5):
            world.say(U1, AGENT, f"balasan {i}")
        world.say(U1, U1, "halo")
        world.facts.upsert(Fact(subject_id=AGENT, key="name", value="Qi", confidence=0.9))
        world.facts.upsert(Fact(subject_id=U1, key="hobby", value="futsal", confidence=0.9))
        assembler = RelevanceAssembler(world.store, world.facts)
        window = assembler.build_context(world.query(U1, "oke"), U1)

        header = window.by_label("chat_header")[0]
        assert header.content.startswith("This is a private chat with Budi Santoso, who has sent 1 messages here.")
        assert [e.source_label for e in window.by_label("facts")] == [f"facts:{U1}"]


class TestCrossChat:
    def test_mood_falls_back_to_latest_group(self, world):
        world.say(U1, U1, "halo")
        world.say(FUTSAL, U2, "kok telat lagi", title="Futsal")
        world.say(FUTSAL, AGENT, "aku kesel nih")
        window = world.assembler().build_context(world.query(U1, "kenapa kamu marah di grup"), U1)

        entries = window.by_label("cross_chat:mood")
        assert len(entries) == 1
        entry = entries[0]
        assert entry.priority == EntryPriority.CROSS_CHAT
        assert "In Futsal: Sari said: kok telat lagi" in entry.content
        assert "In Futsal: Qi said: aku kesel nih" in entry.content
        assert metrics.count("context.cross_chat.mood") == 1

    def test_group_activity_named_chat(self, world):
        world.say(U1, U1, "halo")
        world.say(OFFICE, U1, "meeting jam 3", title="Kantor")
        world.say(FUTSAL, U2, "besok main jam berapa?", title="Futsal")
        world.say(FUTSAL, U1, "jam 7")
        world.say(OFFICE, U1, "oke")
        window = world.assembler().build_context(world.query(U1, "ada apa di grup futsal?"), U1)

        entry = window.by_label("cross_chat:group_activity")[0]
        assert entry.content.startswith("Recent activity in Futsal (2 members):")
        assert "In Futsal: Sari said: besok main jam berapa?" in entry.content
        assert "meeting" not in entry.content

    def test_group_kind_from_store_not_id(self, world):
        world.say(U1, U1, "halo")
        world.clock += 1
        world.store.append_message(
            "kantor-chat",
            Message(
                id="k1",
                conversation_id="kantor-chat",
                sender_id=U1,
                sender_name="Budi Santoso",
                content="rapat dipindah jam 4",
                timestamp=T0 + timedelta(minutes=world.clock),
            ),
            kind=ChatKind.GROUP,
            title="Kantor",
        )
        world.say("fam@g.us", U2, "makan malam di rumah", title="Family")
        window = world.assembler().build_context(world.query(U1, "ada apa di grup kantor?"), U1)

        entry = window.by_label("cross_chat:group_activity")[0]
        assert entry.content.startswith("Recent activity in Kantor (1 members):")
        assert "rapat dipindah jam 4" in entry.content
        assert "makan malam" not in entry.content

    def test_unresolved_named_group_noted(self, world):
        world.say(U1, U1, "halo")
        world.say(FUTSAL, U2, "kok telat lagi", title="Futsal")
        world.say(FUTSAL, AGENT, "aku kesel nih")
        window = world.assembler().build_context(world.query(U1, "kenapa kamu marah di grup badminton"), U1)

        lines = window.by_label("cross_chat:mood")[0].content.splitlines()
        assert lines[0] == 'No group matching "badminton" was found; showing Futsal instead.'
        assert lines[1] == "Recent exchanges involving Qi in Futsal:"

    def test_resolved_group_has_no_note(self, world):
        world.say(U1, U1, "halo")
        world.say(FUTSAL, U2, "besok main?", title="Futsal")
        window = world.assembler().build_context(world.query(U1, "ada apa di grup futsal?"), U1)
        assert "No group matching" not in window.by_label("cross_chat:group_activity")[0].content

    def test_group_activity_placeholder(self, world):
        world.say(U1, U1, "halo")
        world.say(FUTSAL, U2, "halo", title="Futsal")
        world.store.clear_messages(FUTSAL)
        window = world.assembler().build_context(world.query(U1, "ada apa di grup futsal?"), U1)
        entry = window.by_label("cross_chat:group_activity")[0]
        assert "no recent activity in Futsal" in entry.content

    def test_conversation_with_person(self, world):
        world.say(OFFICE, U1, "pagi", title="Kantor")
        world.say(U2, U2, "aku mau resign")
        world.say(U2, AGENT, "serius?")
        window = world.assembler().build_context(world.query(OFFICE, "kamu ngobrol apa sama sari?"), OFFICE)

        entry = window.by_label("cross_chat:conversation")[0]
        assert "What Sari has said in other conversations:" in entry.content
        assert "In private chat with Sari: Sari said: aku mau resign" in entry.content
        assert "In private chat with Sari: Qi said: serius?" in entry.content

    def test_unresolved_person_adds_nothing(self, world):
        world.say(OFFICE, U1, "pagi")
        window = world.assembler().build_context(world.query(OFFICE, "kamu ngobrol apa sama joko?"), OFFICE)
        assert window.by_label("cross_chat") == []
        assert window.degraded == []

    def test_cap(self, world):
        world.say(U1, U1, "halo")
        for i in range(10):
            world.say(FUTSAL, AGENT, f"kesel {i}")
        window = world.assembler(max_cross_chat_messages=3).build_context(
            world.query(U1, "kenapa kamu marah di grup"), U1
        )
        lines = window.by_label("cross_chat:mood")[0].content.splitlines()
        assert len(lines) == 1 + 3
        assert lines[-1].endswith("kesel 9")


class TestPrivateDigest:
    def test_digest_in_group(self, world):
        world.say(OFFICE, U1, "pagi")
        for i in range(5):
            world.say(U1, U1, f"curhat {i}")
        window = world.assembler().build_context(world.query(OFFICE, "oke"), OFFICE)

        entry = window.by_label("private_digest")[0]
        lines = entry.content.splitlines()[1:]
        assert lines == [
            "[private chat with Budi Santoso] Budi Santoso: curhat 4",
            "[private chat with Budi Santoso] Budi Santoso: curhat 3",
            "[private chat with Budi Santoso] Budi Santoso: curhat 2",
        ]
        assert entry.priority == EntryPriority.CROSS_CHAT

    def test_not_in_private_chats(self, world):
        world.say(U1, U1, "halo")
        window = world.assembler().build_context(world.query(U1, "oke"), U1)
        assert window.by_label("private_digest") == []

    def test_disabled(self, world):
        world.say(OFFICE, U1, "pagi")
        world.say(U1, U1, "curhat")
        window = world.assembler(include_private_digest=False).build_context(world.query(OFFICE, "oke"), OFFICE)
        assert window.by_label("private_digest") == []


class TestImage:
    def test_latest_analysis_attached(self, world):
        world.say(OFFICE, U1, "nih")
        analysis = world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: seekor kucing oranye]")
        query = world.query(OFFICE, "gambar tadi apa?")
        window = world.assembler().build_context(query, OFFICE, now=analysis.timestamp + timedelta(minutes=30))

        entry = window.by_label("image_analysis")[0]
        assert entry.content.splitlines() == [
            "An image shared 30 minutes ago was analysed as: seekor kucing oranye",
            "It was sent by Budi Santoso.",
        ]
        assert entry.message_id is None

    def test_no_prior_image(self, world):
        world.say(OFFICE, U1, "nih")
        window = world.assembler().build_context(world.query(OFFICE, "gambar tadi apa?"), OFFICE)
        assert window.by_label("image_analysis") == []

    def test_no_reference(self, world):
        world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: kucing]")
        window = world.assembler().build_context(world.query(OFFICE, "oke sip"), OFFICE)
        assert window.by_label("image_analysis") == []

    def test_lookup_best_match(self, world):
        world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: kucing]", msg_id="a1")
        world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: anjing]", msg_id="a2")
        lookup = MagicMock(return_value=[ImageMatch("a2", 0.4), ImageMatch("a1", 0.9)])
        query = world.query(OFFICE, "foto kucing tadi")
        window = world.assembler(image_lookup=lookup).build_context(query, OFFICE)

        lines = window.by_label("image_analysis")[0].content.splitlines()
        assert lines[0].endswith("kucing")
        assert lines[1] == "Earlier images: anjing"
        _, kwargs = lookup.call_args
        assert kwargs["conversation_id"] == OFFICE
        assert kwargs["since"] == timedelta(days=7)
        assert kwargs["limit"] == 3
        assert kwargs["threshold"] == 0.3

    def test_lookup_match_outside_conversation_skipped(self, world):
        world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: kucing]", msg_id="a1")
        analysis = world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: anjing]", msg_id="a2")
        lookup = MagicMock(
            return_value=[ImageMatch("elsewhere", 0.95, analysis="pantai"), ImageMatch("a2", 0.5)]
        )
        window = world.assembler(image_lookup=lookup).build_context(
            world.query(OFFICE, "foto tadi"), OFFICE, now=analysis.timestamp + timedelta(hours=2)
        )

        content = window.by_label("image_analysis")[0].content
        assert content.splitlines()[0] == "An image shared 2 hours ago was analysed as: anjing"
        assert "pantai" not in content

    def test_earlier_analyses_capped_newest_first(self, world):
        for animal in ("ikan", "burung", "kucing", "anjing"):
            world.say(OFFICE, AGENT, f"[IMAGE ANALYSIS: {animal}]")
        window = world.assembler(max_image_analysis_messages=3).build_context(world.query(OFFICE, "gambar tadi"), OFFICE)

        lines = window.by_label("image_analysis")[0].content.splitlines()
        assert lines[0].endswith("anjing")
        assert lines[1] == "Earlier images: kucing | burung"

    def test_followup_snippet(self, world):
        world.say(OFFICE, U2, "lihat ini")
        world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: grafik penjualan]")
        world.say(OFFICE, U1, "naik terus ya " + "x" * 150)
        world.say(OFFICE, AGENT, "iya, naik 20%")
        window = world.assembler().build_context(world.query(OFFICE, "gambar tadi gimana?"), OFFICE)

        lines = window.by_label("image_analysis")[0].content.splitlines()
        assert lines[1] == "It was sent by Sari."
        assert lines[2].startswith("Follow-up: Budi Santoso: naik terus ya ")
        assert "... | Qi: iya, naik 20%" in lines[2]
        assert len(window.by_label("image_analysis")) == 1

    def test_lookup_failure_degrades(self, world):
        world.say(OFFICE, U1, "nih")
        world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: kucing]")
        lookup = MagicMock(side_effect=RuntimeError("vector index down"))
        window = world.assembler(image_lookup=lookup).build_context(world.query(OFFICE, "gambar itu apa"), OFFICE)

        assert window.by_label("image_analysis") == []
        assert [d.step for d in window.degraded] == ["image"]
        assert window.message_ids()
        assert metrics.count("context.degraded.image") == 1


class TestFacts:
    def _busy_office(self, world):
        for i in range(3):
            world.say(OFFICE, U1, f"kerja {i}")
        world.say(OFFICE, U2, "semangat")

    def test_most_active_participant_facts(self, world):
        self._busy_office(world)
        world.facts.upsert(Fact(subject_id=U1, key="name", value="Budi", confidence=0.9))
        world.facts.upsert(Fact(subject_id=U1, key="hobby", value="futsal", confidence=0.8))
        world.facts.upsert(Fact(subject_id=U1, key="city", value="Bandung", confidence=0.6))
        world.facts.upsert(Fact(subject_id=U2, key="city", value="Depok", confidence=0.95))
        window = world.assembler().build_context(world.query(OFFICE, "oke"), OFFICE)

        entry = window.entries[-1]
        assert entry.priority == EntryPriority.FACTS
        assert entry.source_label == f"facts:{U1}"
        assert entry.content.splitlines() == [
            "Known facts about Budi Santoso:",
            "- name: Budi",
            "- hobby: futsal",
        ]

    def test_decayed_fact_filtered(self, world):
        self._busy_office(world)
        now = T0 + timedelta(days=1)
        world.facts.upsert(
            Fact(
                subject_id=U1,
                key="mood",
                value="stressed",
                confidence=0.8,
                category=FactCategory.TEMPORAL,
                updated_at=now - timedelta(days=45),
            )
        )
        window = world.assembler().build_context(world.query(OFFICE, "oke"), OFFICE, now=now)
        assert window.by_label("facts") == []

    def test_cap(self, world):
        self._busy_office(world)
        for i in range(5):
            world.facts.upsert(Fact(subject_id=U1, key=f"k{i}", value="v", confidence=0.9))
        window = world.assembler(max_context_facts=2).build_context(world.query(OFFICE, "oke"), OFFICE)
        assert len(window.by_label("facts")[0].content.splitlines()) == 1 + 2

    def test_fact_store_failure_degrades(self, world):
        self._busy_office(world)
        broken = MagicMock()
        broken.get_facts.side_effect = RuntimeError("database is locked")
        window = world.assembler(facts=broken).build_context(world.query(OFFICE, "oke"), OFFICE)
        assert window.by_label("facts") == []
        assert "facts" in [d.step for d in window.degraded]
        assert len(window.message_ids()) == 4


class TestFailureSemantics:
    def test_missing_conversation(self, world):
        window = world.assembler().build_context(world.query("nope@g.us", "halo"), "nope@g.us")
        assert window.entries == []
        assert window.degraded == []

    @pytest.mark.parametrize("conversation_id", ["", None])
    def test_requires_conversation_id(self, world, conversation_id):
        with pytest.raises(InvalidInput):
            world.assembler().build_context(world.query(OFFICE, "halo"), conversation_id)

    def test_invalid_input_is_value_error(self):
        assert issubclass(InvalidInput, ValueError)

    def test_empty_conversation_still_runs_optional_steps(self, world):
        world.say(U1, U1, "halo")
        world.say(FUTSAL, AGENT, "aku kesel nih", title="Futsal")
        world.facts.upsert(Fact(subject_id=U1, key="name", value="Budi", confidence=0.9))
        world.store.clear_messages(U1)

        window = world.assembler().build_context(world.query(U1, "kenapa kamu marah di grup"), U1)
        assert window.message_ids() == []
        assert window.by_label("cross_chat:mood")
        assert window.by_label("facts")

    def test_no_query(self, world):
        world.say(OFFICE, U1, "halo")
        window = world.assembler().build_context(None, OFFICE, now=T0)
        assert len(window.message_ids()) == 1

    def test_build_metrics(self, world):
        world.say(OFFICE, U1, "halo")
        world.assembler().build_context(world.query(OFFICE, "halo"), OFFICE)
        assert metrics.count("context.windows") == 1
        assert metrics.summary()["timers"]["context.build"]["count"] == 1


class TestInvariants:
    @pytest.fixture
    def busy(self, world):
        world.say(FUTSAL, U2, "besok main?", title="Futsal")
        world.say(FUTSAL, AGENT, "aku kesel sama wasitnya!")
        for i in range(30):
            world.say(OFFICE, U1 if i % 3 else U2, f"makan siang {i}" if i % 4 == 0 else f"kerja {i}", title="Kantor")
        world.say(OFFICE, AGENT, "[IMAGE ANALYSIS: grafik penjualan]")
        world.say(U1, U1, "curhat dong")
        world.facts.upsert(Fact(subject_id=U1, key="name", value="Budi", confidence=0.9))
        world.facts.upsert(Fact(subject_id=U1, key="pet", value="kucing", confidence=0.5))
        return world

    def _build(self, world, text="kenapa kamu marah di grup futsal? gambar tadi apa, mau makan?"):
        query = world.query(OFFICE, text, is_reply=True, replied_to_id="m5")
        return world.assembler(max_relevant_messages=10).build_context(query, OFFICE, now=T0 + timedelta(hours=2))

    def test_bound(self, busy):
        window = self._build(busy)
        assert len(window.message_entries) == 10
        assert len(window.injected_entries) <= MAX_INJECTED_ENTRIES
        assert len(window) <= 10 + MAX_INJECTED_ENTRIES

    def test_all_injection_kinds_present(self, busy):
        labels = [e.source_label for e in self._build(busy).injected_entries]
        assert labels == [
            "chat_header",
            "cross_chat:mood",
            "private_digest",
            "image_analysis",
            f"facts:{U1}",
        ]

    def test_dedup(self, busy):
        ids = self._build(busy).message_ids()
        assert len(ids) == len(set(ids))

    def test_priority_order(self, busy):
        priorities = [e.priority for e in self._build(busy).entries]
        assert priorities == sorted(priorities)

    def test_deterministic(self, busy):
        query = busy.query(OFFICE, "mau makan?")
        assembler = busy.assembler()
        now = T0 + timedelta(hours=2)
        assert assembler.build_context(query, OFFICE, now=now) == assembler.build_context(query, OFFICE, now=now)

    def test_low_confidence_facts_never_included(self, busy):
        window = self._build(busy)
        assert all("kucing" not in e.content for e in window.by_label("facts"))

    def test_to_messages(self, busy):
        messages = self._build(busy).to_messages()
        assert messages[0]["role"] == "system"
        assert {m["role"] for m in messages} <= {"system", "user", "assistant"}
        assert any(m.get("name") == "Qi" for m in messages)
