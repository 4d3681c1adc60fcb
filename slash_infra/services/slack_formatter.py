from slash_infra.models.slack import Attachment, Field
from slash_infra.services.ec2_resolver import Result


def format_ec2_instance_as_attachment(instance: Result) -> Attachment:
    """One EC2 instance as a Slack attachment with its tags and IPs as fields."""
    instance_id = instance.get_metadata("instance_id")
    return Attachment(
        fallback=f"EC2 instance {instance_id}",
        text=(
            f"Instance <{instance.get_link('ec2_console')}|{instance_id}> is a "
            f"`{instance.get_metadata('instance_state')}` "
            f"`{instance.get_metadata('instance_type')}` "
            f"in `{instance.get_metadata('az')}`"
        ),
        fields=[
            Field(title="Environment",   value=instance.get_metadata("tag:Environment"), short=True),
            Field(title="Role",          value=instance.get_metadata("tag:Role"),        short=True),
            Field(title="Public IP(s)",  value=instance.get_metadata("public_ips"),      short=True),
            Field(title="Private IP(s)", value=instance.get_metadata("private_ips"),     short=True),
            Field(value=f"⏳ <{instance.get_link('config_timeline')}|AWS config timeline>"),
        ],
        markdown_in=["text"],
    )
