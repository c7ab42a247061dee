from dataclasses import dataclass


@dataclass(frozen=True)
class Messages:
    command_description: str
    type_description: str
    choice_channel: str
    choice_user: str
    no_data: str
    channel_error: str
    user_error: str
    generic_error: str
    chart_title: str
    chart_ylabel: str
    chart_dataset: str
    hours_suffix: str
    unknown_channel: str = "Unknown Channel"
    unknown_user: str = "Unknown User"


MESSAGES = {
    "ja": Messages(
        command_description="ボイスチャンネルの利用統計を表示",
        type_description="統計の種類",
        choice_channel="チャンネル別",
        choice_user="ユーザー別",
        no_data="このサーバーにはまだデータがありません。",
        channel_error="チャンネル統計の生成中にエラーが発生しました。",
        user_error="ユーザー統計の生成中にエラーが発生しました。",
        generic_error="統計の生成中にエラーが発生しました。しばらくしてからもう一度お試しください。",
        chart_title="ボイスチャンネル使用統計",
        chart_ylabel="合計時間 (時間)",
        chart_dataset="Total Time (hours)",
        hours_suffix="時間",
    ),
    "en": Messages(
        command_description="Show voice channel usage statistics",
        type_description="Kind of statistics",
        choice_channel="By channel",
        choice_user="By user",
        no_data="There is no data for this server yet.",
        channel_error="Something went wrong while generating channel statistics.",
        user_error="Something went wrong while generating user statistics.",
        generic_error="Something went wrong while generating statistics. Please try again later.",
        chart_title="Voice channel usage",
        chart_ylabel="Total time (hours)",
        chart_dataset="Total Time (hours)",
        hours_suffix="h",
    ),
}


def get_messages(locale: str) -> Messages:
    try:
        return MESSAGES[locale]
    except KeyError:
        raise ValueError(f"unsupported locale {locale!r}") from None
