"""서비스 그래프 의존성 주입 컨테이너

저장소(DatabaseHelper), 외부 클라이언트, 잠금 레지스트리는 인스턴스로 등록하고
검증/웹훅/검토 서비스는 클래스로 등록한다. 서비스 클래스는 생성자 타입 힌트로
의존성을 찾아 최초 조회 시 한 번만 만든다.

생성자 인자 해석 규칙:
- 등록된 타입이면 그 인스턴스를 주입한다.
- Optional[X] 인데 X 가 등록되지 않았으면 기본값을 쓴다 (임계값처럼 설정에서 읽는 값).
- 그 외에는 기본값이 있을 때만 생략하고, 없으면 ValueError.
"""
import inspect
from types import UnionType
from typing import Any, Dict, Optional, Set, Type, TypeVar, Union, get_args, get_origin, get_type_hints


T = TypeVar('T')

_NONE_TYPE = type(None)


def _optional_target(annotation: Any) -> Optional[Any]:
    """Optional[X] / X | None 이면 X, 아니면 None"""
    if get_origin(annotation) not in (Union, UnionType):
        return None
    members = [arg for arg in get_args(annotation) if arg is not _NONE_TYPE]
    if len(members) == 1 and len(members) < len(get_args(annotation)):
        return members[0]
    return None


class DIContainer:
    """타입 키 기반 서비스 레지스트리"""

    def __init__(self):
        self._instances: Dict[Any, Any] = {}
        self._service_classes: Dict[Any, type] = {}
        self._building: Set[Any] = set()

    def register_singleton(self, key: Type[T], instance: T) -> None:
        """이미 만들어진 인스턴스 등록"""
        self._instances[key] = instance

    def register_service(self, key: Type[T], service_class: Type[T]) -> None:
        """생성자 힌트로 조립할 서비스 클래스 등록"""
        self._service_classes[key] = service_class

    def is_registered(self, key: Any) -> bool:
        return key in self._instances or key in self._service_classes

    def get(self, key: Type[T]) -> T:
        if key in self._instances:
            return self._instances[key]
        if key not in self._service_classes:
            raise ValueError(f"Service {getattr(key, '__name__', key)} not registered")
        if key in self._building:
            raise ValueError(f"Circular dependency while building {getattr(key, '__name__', key)}")

        self._building.add(key)
        try:
            instance = self._build(self._service_classes[key])
        finally:
            self._building.discard(key)
        self._instances[key] = instance
        return instance

    def _build(self, service_class: type) -> Any:
        hints = get_type_hints(service_class.__init__)
        kwargs = {}
        for name, param in inspect.signature(service_class.__init__).parameters.items():
            if name == 'self' or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            annotation = hints.get(name)
            target = _optional_target(annotation) or annotation
            if target is not None and self.is_registered(target):
                kwargs[name] = self.get(target)
            elif param.default is param.empty:
                raise ValueError(
                    f"Cannot resolve dependency '{name}: {annotation}' for {service_class.__name__}"
                )
        return service_class(**kwargs)


# 전역 컨테이너 인스턴스
container = DIContainer()
