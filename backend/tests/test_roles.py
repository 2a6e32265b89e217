from skillpact.utils.roles import PlanRole, capabilities_for, resolve_role


def test_resolve_role():
    assert resolve_role("owner", "owner", ["m1"]) is PlanRole.OWNER
    assert resolve_role("owner", "m1", ["m1", "m2"]) is PlanRole.MEMBER
    assert resolve_role("owner", "stranger", ["m1"]) is PlanRole.VIEWER
    assert resolve_role("owner", "m1") is PlanRole.VIEWER


def test_capability_sets():
    owner = capabilities_for(PlanRole.OWNER)
    member = capabilities_for(PlanRole.MEMBER)
    viewer = capabilities_for(PlanRole.VIEWER)
    assert owner.can_edit and owner.can_toggle and owner.can_invite and not owner.can_leave
    assert member.can_toggle and member.can_leave and not member.can_edit and not member.can_invite
    assert viewer.can_view and not (viewer.can_edit or viewer.can_toggle or viewer.can_invite)
    assert member.as_dict()["can_toggle"] is True
